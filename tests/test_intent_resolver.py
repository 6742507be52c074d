"""
Intent resolution over normalized text.
"""
import pytest

from voice_commerce.intent_resolver import (
    MAX_SUGGESTIONS,
    IntentResolver,
    combine_confidence,
    specificity,
)
from voice_commerce.grammar import Template
from voice_commerce.models import Context, ContextType
from voice_commerce.normalizer import normalize


@pytest.fixture
def resolver():
    return IntentResolver()


def _resolve(resolver, raw, language="de-CH", confidence=0.95, **kw):
    return resolver.match(normalize(raw, language), language=language, confidence=confidence, **kw)


class TestScenarios:
    def test_add_to_cart_with_article(self, resolver):
        result = _resolve(resolver, "Ich möchte einen Burger")
        assert result.intent == "add_to_cart"
        assert result.category == "cart"
        assert result.entities == {"item": "burger", "quantity": 1}
        assert result.confidence >= 0.7

    def test_add_to_cart_with_quantity(self, resolver):
        result = _resolve(resolver, "füge zwei pommes hinzu")
        assert result.intent == "add_to_cart"
        assert result.entities == {"quantity": 2, "item": "pommes"}

    def test_low_recognizer_confidence_gives_suggestions(self, resolver):
        result = _resolve(resolver, "ich möchte einen burger", confidence=0.30)
        assert result.intent is None
        assert not result.matched
        assert result.entities == {}
        assert 0 < len(result.suggestions) <= MAX_SUGGESTIONS
        assert result.suggestions[0].intent == "add_to_cart"

    def test_unmatched_text(self, resolver):
        result = _resolve(resolver, "der himmel ist blau heute")
        assert result.intent is None
        assert result.confidence == 0.0
        assert len(result.suggestions) <= MAX_SUGGESTIONS


class TestPatterns:
    @pytest.mark.parametrize("raw,intent,entities", [
        ("zeige mir das menü", "navigate_menu", {}),
        ("2x Cola", "add_to_cart", {"quantity": 2, "item": "cola"}),
        ("was kostet ein burger", "price_query", {"item": "burger"}),
        ("neue bestellung für tisch 5", "create_order", {"table": 5}),
        ("storniere bestellung 1234", "cancel_order", {"order_id": "1234"}),
        ("ich möchte bezahlen", "checkout", {}),
        ("warenkorb leeren", "clear_cart", {}),
        ("wann habt ihr offen", "opening_hours", {}),
        ("ja bitte", "confirm", {}),
        ("nochmal", "repeat_last", {}),
    ])
    def test_german(self, resolver, raw, intent, entities):
        result = _resolve(resolver, raw, language="de-DE")
        assert result.intent == intent
        assert result.entities == entities

    def test_reservation_entities(self, resolver):
        result = _resolve(resolver, "reserviere einen tisch für 4 personen am freitag um 19 uhr", language="de-DE")
        assert result.intent == "make_reservation"
        assert result.entities == {"guests": 4, "date": "freitag", "time": "19"}

    @pytest.mark.parametrize("raw,language", [
        ("Ich möchte einen Tisch reservieren", "de-CH"),
        ("ich möchte einen tisch reservieren", "de-DE"),
        ("tisch reservieren", "de-DE"),
        ("i'd like to book a table", "en-US"),
        ("je voudrais réserver une table", "fr-CH"),
        ("vorrei prenotare un tavolo", "it-CH"),
    ])
    def test_reservation_without_party_size_is_not_an_order(self, resolver, raw, language):
        result = _resolve(resolver, raw, language=language)
        assert result.intent == "make_reservation"
        assert "item" not in result.entities
        assert "guests" not in result.entities

    @pytest.mark.parametrize("raw,language,intent", [
        ("show me the menu", "en-US", "navigate_menu"),
        ("je voudrais une pizza", "fr-CH", "add_to_cart"),
        ("quanto costa un burger", "it-CH", "price_query"),
        ("statut de la table 3", "fr-FR", "check_table_status"),
    ])
    def test_other_languages(self, resolver, raw, language, intent):
        assert _resolve(resolver, raw, language=language).intent == intent

    def test_swiss_german_dialect_pattern(self, resolver):
        result = _resolve(resolver, "Mer wänd zwöi Röschti")
        assert result.intent == "add_to_cart"
        assert result.dialect is True
        assert result.entities == {"quantity": 2, "item": "rösti"}

    def test_dialect_patterns_only_for_swiss_german(self, resolver):
        assert _resolve(resolver, "mer wollen zwei rösti", language="de-DE").intent is None

    def test_category_priority(self, resolver):
        # "zeige mir alle getränke" is a menu command, not navigation
        assert _resolve(resolver, "zeige mir alle getränke", language="de-DE").intent == "show_category"
        assert _resolve(resolver, "zeige mir alle tische", language="de-DE").intent == "show_all_tables"

    def test_context_does_not_change_match(self, resolver):
        context = Context(type=ContextType.ORDER_CREATION, payload={}, created_at=0.0)
        plain = _resolve(resolver, "ja")
        framed = _resolve(resolver, "ja", context=context)
        assert plain.intent == framed.intent == "confirm"


class TestCustomCommands:
    def test_custom_pattern_is_matched(self, resolver):
        resolver.set_custom_commands([{"intent": "call_waiter", "templates": ["kellner rufen"]}])
        result = _resolve(resolver, "Kellner rufen bitte")
        assert result.intent == "call_waiter"
        assert result.category == "system"

    def test_builtin_patterns_win_within_category(self, resolver):
        resolver.set_custom_commands([{"intent": "yes_please", "template": "ja"}])
        assert _resolve(resolver, "ja").intent == "confirm"

    def test_reset_drops_custom_patterns(self, resolver):
        resolver.set_custom_commands([{"intent": "call_waiter", "templates": ["kellner rufen"]}])
        resolver.set_custom_commands([])
        assert _resolve(resolver, "kellner rufen").intent is None


class TestConfidence:
    def test_specificity(self):
        assert specificity(Template("hilfe"), {}) == 1.0
        template = Template("füge [{quantity:number}] {item}")
        assert specificity(template, {"item": "pommes"}) == 0.75
        assert specificity(template, {"item": "pommes", "quantity": 2}) == 1.0

    def test_combined_is_monotonic(self):
        values = [0.0, 0.3, 0.5, 0.75, 1.0]
        for fit in values:
            scores = [combine_confidence(rec, fit) for rec in values]
            assert scores == sorted(scores)
        for rec in values:
            scores = [combine_confidence(rec, fit) for fit in values]
            assert scores == sorted(scores)

    def test_combined_is_clamped(self):
        assert combine_confidence(1.5, 2.0) == 1.0
        assert combine_confidence(-1.0, 0.5) == 0.0

    def test_higher_recognizer_confidence_never_lowers_result(self, resolver):
        low = _resolve(resolver, "füge pommes hinzu", confidence=0.8)
        high = _resolve(resolver, "füge pommes hinzu", confidence=0.9)
        assert high.confidence >= low.confidence

    def test_custom_threshold(self, resolver):
        assert _resolve(resolver, "ja", confidence=0.85, threshold=0.9).intent is None
        assert _resolve(resolver, "ja", confidence=0.85, threshold=0.8).intent == "confirm"


class TestSuggestions:
    def test_each_intent_once(self, resolver):
        suggestions = resolver.suggest("zeige mir", "de-CH", limit=10)
        intents = [s.intent for s in suggestions]
        assert len(intents) == len(set(intents))

    def test_ranked_by_similarity(self, resolver):
        suggestions = resolver.suggest("zur kass", "de-DE")
        assert suggestions[0].intent == "checkout"
        similarities = [s.similarity for s in suggestions]
        assert similarities == sorted(similarities, reverse=True)

    def test_empty_text(self, resolver):
        assert resolver.suggest("", "de-CH") == []
