"""
Match templates: syntax, slots, fillers and parse errors.
"""
import pytest

from voice_commerce.grammar import Template, TemplateError, parse_number


class TestMatching:
    def test_literal(self):
        assert Template("warenkorb leeren").match("warenkorb leeren") == {}
        assert Template("warenkorb leeren").match("warenkorb jetzt leeren") is None

    def test_alternatives_with_several_words(self):
        t = Template("(was kostet|wie viel kostet) {item}")
        assert t.match("wie viel kostet ein burger") == {"item": "ein burger"}

    def test_optional_groups(self):
        t = Template("[zeige] [mir|mer] alle tische")
        assert t.match("alle tische") == {}
        assert t.match("zeige mer alle tische") == {}
        assert t.match("zeige uns alle tische") is None

    def test_optional_slot_reports_none(self):
        t = Template("füge [{quantity:number}] {item} [hinzu]")
        assert t.match("füge pommes hinzu") == {"quantity": None, "item": "pommes"}
        assert t.match("füge zwei pommes hinzu") == {"quantity": "zwei", "item": "pommes"}

    def test_number_slot(self):
        t = Template("tisch {table:number}")
        assert t.match("tisch 12") == {"table": "12"}
        assert t.match("tisch zwölf") == {"table": "zwölf"}
        assert t.match("tisch gross") is None

    def test_word_slot_is_one_word(self):
        t = Template("storniere bestellung {order_id:word}")
        assert t.match("storniere bestellung a17") == {"order_id": "a17"}
        assert t.match("storniere bestellung a 17") is None

    def test_polite_fillers(self):
        t = Template("zur kasse")
        assert t.match("bitte zur kasse") == {}
        assert t.match("zur kasse danke") == {}
        assert t.match("zur kasse s'il vous plaît") == {}

    def test_surrounding_whitespace(self):
        assert Template("  hilfe ").match("  hilfe ") == {}

    def test_slot_names(self):
        t = Template("tisch für {guests:number} [am {date}] [um {time}]")
        assert t.slot_names == ("guests", "date", "time")
        assert [s.kind for s in t.slots] == ["number", "text", "text"]


class TestParseErrors:
    @pytest.mark.parametrize("source", [
        "",
        "(menü|karte",
        "[zeige mir",
        "menü)",
        "(menü||karte)",
        "{1item}",
        "{item:float}",
        "{item} und {item}",
    ])
    def test_rejected(self, source):
        with pytest.raises(TemplateError):
            Template(source)

    def test_template_error_is_value_error(self):
        with pytest.raises(ValueError):
            Template("[offen")


class TestParseNumber:
    @pytest.mark.parametrize("value,expected", [
        ("12", 12),
        ("zwei", 2),
        ("Zweimal", 2),
        ("trois", 3),
        ("dodici", 12),
        ("seven", 7),
        (" 4 ", 4),
        ("x", None),
        (None, None),
    ])
    def test_values(self, value, expected):
        assert parse_number(value) == expected
