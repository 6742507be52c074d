"""
Localized message catalogs.
"""
from voice_commerce.messages import get_message, join_alternatives, load_catalog, resolution_chain


def test_resolution_chain():
    assert resolution_chain("de-CH") == ["de-CH", "de", "en"]
    assert resolution_chain("en-GB") == ["en-GB", "en"]
    assert resolution_chain("") == ["en"]


def test_regional_override_and_fallback():
    assert get_message("info.greeting", "de-CH") == "Grüezi! Wie chan ich Ihne helfe?"
    assert get_message("navigation.home", "de-CH") == get_message("navigation.home", "de-DE")


def test_parameters_are_formatted():
    assert get_message("cart.added", "en-US", quantity=2, item="burger") == "2x burger added to your cart"
    assert get_message("cart.added", "de-CH", quantity=1, item="Röschti") == "1x Röschti isch i Warechorb"


def test_missing_parameter_returns_template():
    assert get_message("cart.added", "en-US", item="burger") == "{quantity}x {item} added to your cart"


def test_unknown_key_is_visible():
    assert get_message("nope.missing", "fr-CH") == "nope.missing"


def test_unknown_language_falls_back_to_english():
    assert get_message("clarify.unknown", "ja-JP") == "Sorry, I didn't understand that"


def test_join_alternatives():
    assert join_alternatives(["zur kasse", "hilfe"], "de-CH") == '"zur kasse" oder "hilfe"'
    assert join_alternatives(["menu"], "en-US") == '"menu"'


def test_catalogs_share_keys():
    english = set(load_catalog("en"))
    for name in ("de", "fr", "it"):
        assert set(load_catalog(name)) == english, name
    assert set(load_catalog("de-CH")) <= english
