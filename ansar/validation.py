"""Post-generation checks: confidence scoring, citations, reference ranges."""

import re
from dataclasses import dataclass

from .config import config
from .models import Confidence, ValidationResult

logger = config.get_logger(__name__)

DISCLAIMER_MARKER = "والله أعلم"
LOW_CONFIDENCE_DISCLAIMER = (
    f"\n\n{DISCLAIMER_MARKER} (Et Allah sait mieux). "
    "Consultez un savant pour confirmer."
)

CITATION_RE = re.compile(r"\[Source\s+\d+\]", re.IGNORECASE)


@dataclass(frozen=True)
class ReferenceRule:
    """A numeric reference pattern whose first group must fall in a range."""

    name: str
    pattern: re.Pattern
    minimum: int
    maximum: int


SURAH_MIN = 1
SURAH_MAX = 114

REFERENCE_RULES: tuple[ReferenceRule, ...] = (
    ReferenceRule(
        name="surah",
        pattern=re.compile(r"(?:surah|sourate|سورة)\s+(\d+)", re.IGNORECASE),
        minimum=SURAH_MIN,
        maximum=SURAH_MAX,
    ),
    ReferenceRule(
        name="surah",
        pattern=re.compile(r"\b(\d{1,3}):(\d+)\b"),
        minimum=SURAH_MIN,
        maximum=SURAH_MAX,
    ),
)


def score_confidence(source_count: int, avg_similarity: float) -> Confidence:
    """Grade how well an answer is grounded.

    Returns:
        ``"high"`` for 3+ sources averaging above 0.8, ``"medium"`` for at
        least one source averaging above 0.65, ``"low"`` otherwise.
    """
    if source_count >= 3 and avg_similarity > 0.8:  # noqa: PLR2004
        return "high"
    if source_count >= 1 and avg_similarity > 0.65:  # noqa: PLR2004
        return "medium"
    return "low"


def check_reference_ranges(
    text: str, rules: tuple[ReferenceRule, ...] = REFERENCE_RULES
) -> list[str]:
    """Flag references whose leading number is outside the valid range.

    Returns:
        One warning per offending reference.
    """
    warnings = []
    for rule in rules:
        for match in rule.pattern.finditer(text):
            number = int(match.group(1))
            if not rule.minimum <= number <= rule.maximum:
                warnings.append(
                    f"Potentially invalid {rule.name} number {number} found "
                    f"(valid range: {rule.minimum}-{rule.maximum})."
                )
    return warnings


def validate_response(
    text: str, source_count: int, avg_similarity: float, category: str
) -> ValidationResult:
    """Validate and possibly extend a generated answer.

    Warnings never block the answer; they are logged. Low-confidence answers
    get the disclaimer appended once, so the returned text may be longer
    than ``text``.

    Returns:
        ValidationResult: Final text, confidence and warnings.
    """
    confidence = score_confidence(source_count, avg_similarity)
    warnings = []

    if source_count > 0 and not CITATION_RE.search(text):
        warnings.append(
            f"Response has {source_count} source(s) but no [Source N] citations "
            "found in text."
        )

    warnings.extend(check_reference_ranges(text))

    for warning in warnings:
        logger.warning("Validation (%s): %s", category, warning)

    if confidence == "low" and DISCLAIMER_MARKER not in text:
        text += LOW_CONFIDENCE_DISCLAIMER

    return ValidationResult(text=text, confidence=confidence, warnings=warnings)
