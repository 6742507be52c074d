"""
Voice commerce pipeline for Swiss multilingual food ordering.

Spoken utterance -> recognition -> dialect normalization -> intent resolution
-> context merge -> command execution -> spoken feedback -> usage statistics.

Languages: de-CH (with ZH/BE/BS dialect folding), fr-CH, it-CH, de-DE, de-AT,
fr-FR, it-IT, en-US, en-GB.
"""
