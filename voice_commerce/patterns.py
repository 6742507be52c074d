"""
Command pattern tables.

Each CommandPattern lists its templates in the order they are tried; the
resolver walks categories in CATEGORY_PRIORITY order and, inside a category,
patterns in declaration order. Templates are written against *normalized*
text, so Swiss German dialect words appear here in their folded form
("mer wollen" for "mer wänd", "können mer ... haben" for "chönd mer ... ha").
Examples are raw utterances; they seed the similarity suggestions.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Sequence, Tuple

from .grammar import Template
from .models import CATEGORY_PRIORITY, CommandCategory

NAV = CommandCategory.NAVIGATION.value
ORD = CommandCategory.ORDERS.value
MENU = CommandCategory.MENU.value
CART = CommandCategory.CART.value
REST = CommandCategory.RESTAURANT.value
SYS = CommandCategory.SYSTEM.value

_DE_ART = "[ein|eine|einen|einmal|der|die|das|den]"


@dataclass
class CommandPattern:
    category: str
    intent: str
    templates: Tuple[str, ...]
    examples: Tuple[str, ...] = ()
    dialect: bool = False
    compiled: Tuple[Template, ...] = field(init=False, repr=False)

    def __post_init__(self):
        if not self.templates:
            raise ValueError(f"Pattern {self.intent!r} has no templates")
        if self.category not in {c.value for c in CATEGORY_PRIORITY}:
            raise ValueError(f"Unknown category {self.category!r} for {self.intent!r}")
        self.templates = tuple(self.templates)
        self.examples = tuple(self.examples)
        self.compiled = tuple(Template(t) for t in self.templates)


def _p(category: str, intent: str, templates: Sequence[str], examples: Sequence[str] = (), dialect: bool = False) -> CommandPattern:
    return CommandPattern(category, intent, tuple(templates), tuple(examples), dialect)


COMMAND_PATTERNS: List[CommandPattern] = [
    # --- navigation ---
    _p(NAV, "navigate_menu", [
        "[zeige|öffne] [mir|mer|uns] [das|die] (menü|speisekarte|karte)",
        "(menü|speisekarte) [anzeigen|öffnen|zeigen]",
        "(show|open) [me] [the] menu",
        "menu",
        "(montre-moi|montre|affiche|ouvre) [le] menu",
        "(mostrami|mostra|apri) [il] menu",
    ], ["zeige mir das menü", "speisekarte öffnen", "show me the menu", "montre-moi le menu", "mostrami il menu"]),
    _p(NAV, "navigate_home", [
        "[gehe|geh|zurück] [zur|zu] startseite",
        "(go|take me) [to] [the] home [page|screen]",
        "home",
        "[retour] [à] [l'accueil|accueil]",
        "[torna] [alla] (home|pagina iniziale)",
    ], ["zur startseite", "go home", "retour à l'accueil", "torna alla home"]),
    _p(NAV, "navigate_cart", [
        "[zeige|öffne] [mir|mer] [den|meinen|mein] warenkorb",
        "warenkorb (anzeigen|öffnen|zeigen)",
        "[show|open] [me] [my|the] (cart|basket)",
        "[montre|affiche|ouvre] [mon|le] panier",
        "[mostra|mostrami|apri] [il] carrello",
    ], ["zeige mir den warenkorb", "show my cart", "montre mon panier", "mostrami il carrello"]),
    _p(NAV, "navigate_orders", [
        "[zeige] [mir|mer] [meine|die] bestellungen [anzeigen]",
        "[show] [me] [my|the] orders",
        "[montre|affiche] [mes|les] commandes",
        "[mostra|mostrami] [i miei|gli] ordini",
    ], ["zeige meine bestellungen", "show my orders", "montre mes commandes", "mostrami i miei ordini"]),

    # --- orders ---
    _p(ORD, "create_order", [
        "[neue|neuer] bestellung für tisch {table:number}",
        "[new] order for table {table:number}",
        "nouvelle commande pour la table {table:number}",
        "nuovo ordine per il tavolo {table:number}",
    ], ["neue bestellung für tisch 5", "new order for table 5", "nouvelle commande pour la table 5", "nuovo ordine per il tavolo 5"]),
    _p(ORD, "cancel_order", [
        "(storniere|lösche) [die] bestellung {order_id:word}",
        "bestellung {order_id:word} (stornieren|löschen|abbrechen)",
        "cancel [the] order {order_id:word}",
        "annule la commande {order_id:word}",
        "annulla [l'ordine|ordine] {order_id:word}",
    ], ["storniere bestellung 1234", "cancel order 1234", "annule la commande 1234", "annulla l'ordine 1234"]),
    _p(ORD, "check_table_status", [
        "(status|zustand) [von] tisch {table:number}",
        "tisch {table:number} status",
        "[show] [the] status [of] table {table:number}",
        "statut de la table {table:number}",
        "stato del tavolo {table:number}",
    ], ["status von tisch 3", "status of table 3", "statut de la table 3", "stato del tavolo 3"]),
    _p(ORD, "show_all_tables", [
        "[zeige] [mir|mer] alle tische",
        "tischübersicht",
        "[show] [me] all tables",
        "[montre] toutes les tables",
        "[mostra] tutti i tavoli",
    ], ["zeige alle tische", "show all tables", "montre toutes les tables", "mostra tutti i tavoli"]),

    # --- menu ---
    _p(MENU, "price_query", [
        f"(was kostet|wieviel kostet|wie viel kostet|was kosten) {_DE_ART} {{item}}",
        f"(preis|preis von|preis für) {_DE_ART} {{item}}",
        "how much (is|are|does|do) [a|an|the] {item} [cost]",
        "what does [a|an|the] {item} cost",
        "(combien coûte|combien coûtent|quel est le prix de|prix de) [un|une|le|la|les|l'] {item}",
        "(quanto costa|quanto costano|prezzo di|prezzo del) [un|una|uno|il|la|lo|i|le] {item}",
    ], ["was kostet ein burger", "how much is a burger", "combien coûte un burger", "quanto costa un burger"]),
    _p(MENU, "search_products", [
        "(suche|suche nach|finde) {query}",
        "search [for] {query}",
        "(cherche|recherche) {query}",
        "cerca {query}",
    ], ["suche nach vegetarisch", "search for vegan", "cherche végétarien", "cerca vegetariano"]),
    _p(MENU, "show_category", [
        "zeige [mir|mer] [alle|die] {category}",
        "show [me] [all] [the] {category}",
        "(montre|montre-moi|affiche) [tous|toutes] [les] {category}",
        "(mostra|mostrami) [tutti|tutte] [i|le|gli] {category}",
    ], ["zeige mir alle getränke", "show me the desserts", "montre les boissons", "mostrami le bevande"]),
    _p(MENU, "product_info", [
        f"(was ist|was sind|info zu|infos zu|informationen zu) {_DE_ART} {{item}}",
        "(what is|what's|what are|tell me about) [a|an|the] {item}",
        "(c'est quoi|qu'est-ce que c'est) [un|une|le|la|les] {item}",
        "(che cos'è|cos'è|cosa è) [un|una|il|la] {item}",
    ], ["was ist ein cordon bleu", "what is a rösti", "c'est quoi une raclette", "cos'è un risotto"]),

    # --- cart ---
    _p(CART, "clear_cart", [
        "warenkorb leeren",
        "(leere|lösche) [den|meinen] warenkorb",
        "alles (löschen|entfernen)",
        "(clear|empty) [my|the] (cart|basket)",
        "vide [mon|le] panier",
        "svuota [il] carrello",
    ], ["warenkorb leeren", "clear my cart", "vide le panier", "svuota il carrello"]),
    _p(CART, "checkout", [
        "[zur|zu der] kasse",
        "[ich] [möchte|will] (bezahlen|zahlen|auschecken)",
        "(checkout|check out)",
        "[i] [want|would like] [to] pay",
        "(payer|passer à la caisse|à la caisse)",
        "(pagare|alla cassa)",
    ], ["zur kasse", "ich möchte bezahlen", "checkout", "passer à la caisse", "alla cassa"]),
    _p(CART, "remove_from_cart", [
        f"(entferne|lösche|nimm) {_DE_ART} {{item}} [aus dem warenkorb|raus|weg]",
        "{item} (entfernen|löschen)",
        "remove [the|a|an] {item} [from] [my|the] [cart|basket]",
        "(retire|enlève) [le|la|les|un|une] {item} [du panier]",
        "(togli|rimuovi) [il|la|i|le|un|una] {item} [dal carrello]",
    ], ["entferne die pommes", "remove the fries", "retire les frites", "togli le patatine"]),
    _p(CART, "add_to_cart", [
        "füge [{quantity:number}] [ein|eine|einen] {item} [hinzu|dazu|zum warenkorb hinzu|in den warenkorb]",
        "[ich] (möchte gerne|möchte gern|hätte gerne|hätte gern|möchte|will|nehme|bestelle) [{quantity:number}] [ein|eine|einen|einmal] {item}",
        "{quantity:number} (x|mal) {item}",
        "{item} in den warenkorb [legen|packen]",
        "add [{quantity:number}] [a|an|the|some] {item} [to] [my|the] [cart|basket]",
        "(i'd like|i would like|i want|i'll have|i will have|give me|can i have|can i get) [{quantity:number}] [a|an|some] {item}",
        "ajoute [{quantity:number}] [un|une|des|le|la] {item} [au panier]",
        "(je voudrais|je veux|je prends) [{quantity:number}] [un|une|des] {item}",
        "aggiungi [{quantity:number}] [un|una|uno|il|la] {item} [al carrello]",
        "(vorrei|voglio|prendo) [{quantity:number}] [un|una|uno] {item}",
    ], ["füge zwei pommes hinzu", "ich möchte einen burger", "2x cola", "add two burgers", "je voudrais une pizza", "vorrei una pizza"]),

    # --- restaurant ---
    _p(REST, "make_reservation", [
        "(reserviere|reservieren) [einen|ein] tisch für {guests:number} [personen|leute] [(am|für) {date}] [um {time} [uhr]]",
        "tisch für {guests:number} [personen|leute] [(am|für) {date}] [um {time} [uhr]] reservieren",
        "(book|reserve) a table for {guests:number} [people|persons|guests] [on {date}] [at {time}]",
        "(réserve|réserver) une table pour {guests:number} [personnes] [le {date}] [à {time}]",
        "(prenota|prenotare) un tavolo per {guests:number} [persone] [il {date}] [alle {time}]",
        # Party size asked for later
        "[ich] [möchte gerne|möchte gern|möchte|will|würde gerne] [einen|ein] tisch [(am|für) {date}] [um {time} [uhr]] reservieren",
        "[ich] (reserviere|reservieren|buche) [einen|ein] tisch [(am|für) {date}] [um {time} [uhr]]",
        "[i'd like to|i would like to|i want to|can i] (book|reserve) a table [on {date}] [at {time}]",
        "[je voudrais|je veux] (réserve|réserver) une table [le {date}] [à {time}]",
        "[vorrei|voglio] (prenota|prenotare) un tavolo [il {date}] [alle {time}]",
    ], ["reserviere einen tisch für 4 personen am freitag um 19 uhr", "ich möchte einen tisch reservieren", "book a table for 2 on friday at 8", "réserve une table pour 4 personnes", "prenota un tavolo per 2 persone"]),
    _p(REST, "opening_hours", [
        "öffnungszeiten",
        "wann (habt ihr|haben sie) (offen|geöffnet)",
        "wie lange (habt ihr|haben sie) offen",
        "(opening hours|when are you open|what are your opening hours)",
        "(heures d'ouverture|quand êtes-vous ouverts)",
        "(orari|orari di apertura|quando siete aperti)",
    ], ["wann habt ihr offen", "what are your opening hours", "heures d'ouverture", "orari di apertura"]),
    _p(REST, "location_info", [
        "wo (seid ihr|sind sie|ist das restaurant)",
        "[eure|ihre] adresse",
        "(where are you|where is the restaurant|address)",
        "(où êtes-vous|adresse)",
        "(dove siete|indirizzo)",
    ], ["wo seid ihr", "where are you", "où êtes-vous", "dove siete"]),

    # --- system ---
    _p(SYS, "confirm", [
        "(ja|jawohl|genau|richtig|okay|ok|bestätigen|bestätige|yes|yeah|yep|confirm|oui|d'accord|sì|si|certo|va bene)",
    ], ["ja", "yes", "oui", "sì"]),
    _p(SYS, "deny", [
        "(nein|nicht|no|nope|non|abbrechen|annuler|annulla)",
    ], ["nein", "no", "non"]),
    _p(SYS, "show_help", [
        "(hilfe|help|aide|aiuto)",
        "was kann ich sagen",
        "what can i say",
        "que puis-je dire",
        "cosa posso dire",
    ], ["hilfe", "what can i say", "aide", "aiuto"]),
    _p(SYS, "stop_listening", [
        "(stopp|stop|aufhören|hör auf|sei still|ruhe|tais-toi|arrête|basta|fermati)",
    ], ["stopp", "stop", "arrête", "basta"]),
    _p(SYS, "repeat_last", [
        "(wiederholen|wiederhole|nochmal|noch einmal|repeat|again|répète|encore|ripeti|ancora)",
    ], ["nochmal", "repeat", "répète", "ripeti"]),
    _p(SYS, "open_settings", [
        "[öffne] [die] einstellungen",
        "[open] [the] settings",
        "[ouvre] [les] paramètres",
        "[apri] [le] impostazioni",
    ], ["öffne die einstellungen", "open settings", "paramètres", "impostazioni"]),
    _p(SYS, "greeting", [
        "(hallo|guten tag|guten morgen|hi|hello|bonjour|salut|buongiorno|ciao) [ietäch|ieteck|eatech]",
    ], ["hallo", "hello", "bonjour", "buongiorno"]),
]

# Swiss German patterns, matched before the standard ones of the same category
SWISS_GERMAN_PATTERNS: List[CommandPattern] = [
    _p(MENU, "price_query", [
        f"was ist der preis (von|für) {_DE_ART} {{item}}",
    ], ["was isch de priis vo de röschti"], dialect=True),
    _p(CART, "add_to_cart", [
        "mer (wollen|möchten) [{quantity:number}] [ein|eine|einen] {item}",
        "können (mer|wir) [{quantity:number}] [ein|eine|einen] {item} haben",
        "ich (hätte|nehme) gern [{quantity:number}] [ein|eine|einen] {item}",
    ], ["mer wänd zwöi röschti", "chönd mer en kafi ha", "i nehme gern es güggeli"], dialect=True),
    _p(SYS, "confirm", [
        "(ja|alles klar|passt|gern|gerne|tiptop|ja gerne)",
    ], ["jo", "alles klar", "passt"], dialect=True),
    _p(SYS, "deny", [
        "(nein|nicht|lieber nicht|nein danke)",
    ], ["nei", "nöd", "lieber nöd"], dialect=True),
    _p(SYS, "greeting", [
        "(guten tag|hallo) [mitenand|zäme|ietäch]",
    ], ["grüezi", "hoi zäme", "sali"], dialect=True),
]


def _category_rank(category: str) -> int:
    for i, c in enumerate(CATEGORY_PRIORITY):
        if c.value == category:
            return i
    return len(CATEGORY_PRIORITY)


def custom_patterns(entries: Iterable[Mapping[str, Any]]) -> List[CommandPattern]:
    """
    Build patterns from user-defined commands.

    Each entry: {"intent": ..., "templates": [...] or "template": ..., "category": ...,
    "examples": [...]}; category defaults to system.
    """
    patterns: List[CommandPattern] = []
    for entry in entries:
        templates = entry.get("templates") or [entry.get("template")]
        templates = [t for t in templates if t]
        patterns.append(_p(
            entry.get("category", SYS),
            entry["intent"],
            templates,
            entry.get("examples") or templates,
        ))
    return patterns


def active_patterns(dialect: bool, extra: Sequence[CommandPattern] = ()) -> List[CommandPattern]:
    """
    Patterns in matching order: by category priority, then dialect patterns
    (when active), then standard patterns, then user patterns.
    """
    groups: Dict[str, List[CommandPattern]] = {c.value: [] for c in CATEGORY_PRIORITY}
    sources: List[Iterable[CommandPattern]] = []
    if dialect:
        sources.append(SWISS_GERMAN_PATTERNS)
    sources.append(COMMAND_PATTERNS)
    sources.append(extra)
    for source in sources:
        for pattern in source:
            groups.setdefault(pattern.category, []).append(pattern)
    ordered: List[CommandPattern] = []
    for category in sorted(groups, key=_category_rank):
        ordered.extend(groups[category])
    return ordered
