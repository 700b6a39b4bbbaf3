"""Pattern-based question classification.

Rules are tried in order and the first match wins. The order is part of the
behavior: ``quran`` is checked before ``tafsir``, so a question mentioning
both "tafsir" and "surah" is classified as ``quran``.
"""

import re
from collections.abc import Callable
from dataclasses import dataclass

DEFAULT_CATEGORY = "general"


@dataclass(frozen=True)
class CategoryRule:
    """A category paired with the predicate that selects it."""

    category: str
    predicate: Callable[[str], bool]

    @classmethod
    def from_pattern(cls, category: str, pattern: str) -> "CategoryRule":
        """Build a rule from a case-insensitive regular expression.

        Returns:
            CategoryRule matching when the pattern is found anywhere.
        """
        compiled = re.compile(pattern, re.IGNORECASE)
        return cls(category, lambda query: compiled.search(query) is not None)


CATEGORY_RULES: tuple[CategoryRule, ...] = (
    CategoryRule.from_pattern(
        "quran",
        r"quran|coran|sourate|surah|verse|ayah|ayat|قرآن|آية|recit|récitation"
        r"|tajwid|مصحف|تلاوة",
    ),
    CategoryRule.from_pattern(
        "tafsir",
        r"tafsir|تفسير|exégèse|interprétation|meaning.*verse|signification",
    ),
    CategoryRule.from_pattern(
        "hadith",
        r"hadith|حديث|prophet.*said|sunnah|narrator|bukhari|muslim|tirmidhi"
        r"|abu.?daw|ibn.?majah|nasai|رسول الله|النبي|سنة|رواية|صحيح|حسن|rapporté"
        r"|narrateur|chaîne",
    ),
    CategoryRule.from_pattern(
        "fiqh",
        r"halal|haram|permissible|ruling|wudu|salah|salat|prayer|fasting|zakat"
        r"|hajj|umrah|nikah|divorce|fiqh|حكم|فتوى|licite|illicite|jeûne|prière"
        r"|ablution|aumône|pèlerinage|mariage|héritage|finance|nourriture"
        r"|purification|صلاة|صيام|زكاة|حج|عمرة|نكاح|طلاق|ميراث|وضوء|طهارة",
    ),
    CategoryRule.from_pattern(
        "aqeedah",
        r"belief|aqeedah|aqidah|tawhid|shirk|angels|qadr|destiny|afterlife|jannah"
        r"|jahannam|عقيدة|توحيد|إيمان|croyance|foi|paradis|enfer|résurrection"
        r"|anges|livres|prophètes|destin|جنة|نار|بعث|ملائكة",
    ),
    CategoryRule.from_pattern(
        "seerah",
        r"prophet.*life|seerah|biography|battle|migration|hijrah|companion|sahab"
        r"|سيرة|هجرة|biographie|prophète|compagnon|bataille|غزوة|صحابة|فتح",
    ),
)

HADITH_KEYWORDS: tuple[str, ...] = (
    "hadith",
    "حديث",
    "bukhari",
    "muslim",
    "tirmidhi",
    "abu dawood",
    "ibn majah",
    "sahih",
    "prophet said",
    "messenger of allah",
    "رسول الله",
    "النبي",
    "narrated",
    "reported",
    "authentic",
    "collection",
    "compilation",
)


def classify_question(
    query: str, rules: tuple[CategoryRule, ...] = CATEGORY_RULES
) -> str:
    """Return the category of the first rule matching ``query``.

    Returns:
        Category name, ``general`` when no rule matches.
    """
    for rule in rules:
        if rule.predicate(query):
            return rule.category
    return DEFAULT_CATEGORY


def is_hadith_query(query: str) -> bool:
    """Keyword check used to route queries to the direct hadith search.

    Returns:
        True if any hadith keyword occurs in the query.
    """
    lowered = query.lower()
    return any(keyword in lowered for keyword in HADITH_KEYWORDS)
