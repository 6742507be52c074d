"""
HTTP surface for the voice-commerce pipeline.
"""
