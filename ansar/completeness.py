"""Detect complete-list requests and check that answers list every item."""

import re
from dataclasses import dataclass


@dataclass(frozen=True)
class ListExpectation:
    """A well-known list with a fixed number of items."""

    label: str
    expected_count: int
    patterns: tuple[re.Pattern, ...]


LIST_EXPECTATIONS: tuple[ListExpectation, ...] = (
    ListExpectation(
        label="99 Names of Allah",
        expected_count=99,
        patterns=tuple(
            re.compile(pattern, re.IGNORECASE)
            for pattern in (
                r"99\s*n(om|ame)s?\b",
                r"n(om|ame)s?\s*(d['’]?\s*)?allah",
                r"asma\s*(ul|al)?\s*husna",
                r"أسماء\s*الله\s*الحسنى",
                r"noms\s*d(e|')\s*dieu",
                r"names\s*of\s*(god|allah)",
                r"beautiful\s*names",
                r"beaux\s*noms",
            )
        ),
    ),
    ListExpectation(
        label="Pillars of Islam",
        expected_count=5,
        patterns=tuple(
            re.compile(pattern, re.IGNORECASE)
            for pattern in (
                r"piliers?\s*(de\s*l['’]?\s*islam|of\s*islam)",
                r"pillars?\s*of\s*islam",
                r"أركان\s*الإسلام",
            )
        ),
    ),
    ListExpectation(
        label="Pillars of Iman",
        expected_count=6,
        patterns=tuple(
            re.compile(pattern, re.IGNORECASE)
            for pattern in (
                r"piliers?\s*(de\s*la\s*foi|of\s*(the\s*)?faith|iman)",
                r"pillars?\s*of\s*(iman|faith)",
                r"أركان\s*الإيمان",
            )
        ),
    ),
)

COMPLETENESS_KEYWORDS_RE = re.compile(
    r"\ball\b|\bcomplete\b|\bfull\b|\bentire\b|\btous\b|\btoutes\b"
    r"|\bcomplète\b|\bcomplet\b|\bintégral|\bكامل|\bجميع|\bكل\b"
    r"|\bcitez?\s*(moi\s*)?(les|tous)|\blistes?\b|\blist\b|\bénumère"
    r"|\benumerate|\bdonnez?\s*(moi\s*)?(les|tous)",
    re.IGNORECASE,
)

_NUMBERED_LINE_RE = re.compile(r"^\s*\d+[.)]\s", re.MULTILINE)


@dataclass(frozen=True)
class CompletenessInfo:
    """What a query expects in terms of list completeness."""

    is_list_request: bool
    expected_count: int | None = None
    label: str | None = None
    prompt_augmentation: str = ""


@dataclass(frozen=True)
class CompletenessCheck:
    """Numbered items found in an answer."""

    item_count: int
    is_complete: bool


def _known_list_prompt(expected_count: int, label: str) -> str:
    return (
        "\nCRITICAL COMPLETENESS REQUIREMENT:\n"
        f"The user is asking for the complete {label}. You MUST provide ALL "
        f"{expected_count} items in a numbered list from 1 to {expected_count}.\n"
        "- Do NOT stop early or truncate.\n"
        "- Do NOT summarize or skip items.\n"
        f"- Number each item sequentially: 1. ... 2. ... up to {expected_count}.\n"
        "- If each item has an Arabic name and a meaning/translation, include both.\n"
        "- Output every single item. The response MUST contain exactly "
        f"{expected_count} numbered items.\n"
        "- After the list, include a brief closing line confirming the total count."
    )


GENERIC_COMPLETENESS_PROMPT = (
    "\nCOMPLETENESS REQUIREMENT:\n"
    "The user is asking for a complete list. You MUST provide ALL items "
    "without truncation.\n"
    "- Number each item sequentially.\n"
    "- Do NOT stop early, summarize, or skip items.\n"
    '- Do NOT say "and so on" or "etc.": list every single item.\n'
    "- After the list, confirm the total count."
)


def analyze_completeness(query: str) -> CompletenessInfo:
    """Decide whether ``query`` asks for a complete list.

    Known lists are checked first so their exact item count is available;
    generic keywords ("all", "liste", "جميع", ...) only flag a list request.

    Returns:
        CompletenessInfo for the query.
    """
    for expectation in LIST_EXPECTATIONS:
        if any(pattern.search(query) for pattern in expectation.patterns):
            return CompletenessInfo(
                is_list_request=True,
                expected_count=expectation.expected_count,
                label=expectation.label,
                prompt_augmentation=_known_list_prompt(
                    expectation.expected_count, expectation.label
                ),
            )

    if COMPLETENESS_KEYWORDS_RE.search(query):
        return CompletenessInfo(
            is_list_request=True, prompt_augmentation=GENERIC_COMPLETENESS_PROMPT
        )

    return CompletenessInfo(is_list_request=False)


def verify_completeness(text: str, expected_count: int | None) -> CompletenessCheck:
    """Count numbered lines (``1.`` or ``1)``) in an answer.

    Returns:
        The count, complete when no count was expected or it was reached.
    """
    item_count = len(_NUMBERED_LINE_RE.findall(text))
    if expected_count is None:
        return CompletenessCheck(item_count=item_count, is_complete=True)
    return CompletenessCheck(
        item_count=item_count, is_complete=item_count >= expected_count
    )


def build_continuation_prompt(
    current_count: int, expected_count: int, label: str | None
) -> str:
    """Ask the model to continue a list it cut short.

    Returns:
        The follow-up user message.
    """
    of_label = f" of the {label}" if label else ""
    return (
        f"You previously provided items 1 through {current_count}{of_label}.\n"
        f"The list is incomplete. Continue from item {current_count + 1} to item "
        f"{expected_count}.\n"
        f"Use the same format (numbered list). Do NOT repeat items 1-{current_count}. "
        f"Start directly with {current_count + 1}."
    )
