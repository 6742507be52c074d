"""
Wake phrase detection and stripping.
"""
from voice_commerce.wake_word import WakeWordDetector, wake_words_for


def test_swiss_phrases_come_first():
    phrases = wake_words_for("de-CH")
    assert phrases[0] == "grüezi eatech"
    assert "hoi eatech" in phrases
    assert "hoi eatech" not in wake_words_for("de-DE")


def test_custom_phrase_first_and_deduplicated():
    phrases = wake_words_for("de-CH", "  Hoi EATECH ")
    assert phrases[0] == "hoi eatech"
    assert phrases.count("hoi eatech") == 1


def test_detect_strips_phrase():
    match = WakeWordDetector.for_language("de-CH").detect("Hey Eatech, zeig mer s Mönü")
    assert match.phrase == "hey eatech"
    assert match.remainder == "zeig mer s Mönü"


def test_longest_phrase_wins():
    match = WakeWordDetector.for_language("de-CH").detect("grüezi eatech")
    assert match.phrase == "grüezi eatech"
    assert match.remainder == ""


def test_strip_when_lowercasing_changes_length():
    # "İ".lower() is two code points
    match = WakeWordDetector(["hey eatech"]).detect("İSTANBUL DÖNER hey eatech zeige menü")
    assert match.remainder == "İSTANBUL DÖNER zeige menü"


def test_split_brand_name():
    match = WakeWordDetector(["eatech"]).detect("ea tech zur kasse")
    assert match.phrase == "eatech"
    assert match.remainder == "zur kasse"


def test_no_wake_word():
    detector = WakeWordDetector.for_language("en-US")
    assert detector.detect("show me the menu") is None
    assert detector.detect("") is None


def test_blank_phrases_ignored():
    assert WakeWordDetector(["", "  ", "computer"]).phrases == ["computer"]
