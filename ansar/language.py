"""Lightweight language detection and localized fallback messages."""

import re

ARABIC_CHAR_RE = re.compile(r"[\u0600-\u06FF\u0750-\u077F\uFB50-\uFDFF\uFE70-\uFEFF]")
FRENCH_ACCENT_RE = re.compile(r"[àâçéèêëîïôùûüÿœæ]", re.IGNORECASE)
WORD_SPLIT_RE = re.compile(r"[\s'’\-]+")

ARABIC_RATIO = 0.3
FRENCH_STOPWORD_RATIO = 0.25
FRENCH_STOPWORD_HITS = 2

FRENCH_STOPWORDS = frozenset({
    "le", "la", "les", "des", "une", "un", "est", "que", "ce",
    "dans", "pour", "pas", "sur", "sont", "avec", "tout", "mais",
    "cette", "nous", "vous", "leur", "ces", "ses", "aux", "aussi",
    "entre", "après", "très", "fait", "comme", "quoi", "quel",
    "quelle", "quels", "quelles", "comment", "donne", "donnez",
    "moi", "noms", "tous", "allah", "islam", "coran", "sourate",
    "cite", "combien", "pourquoi", "qui", "ou", "donc",
})  # fmt: skip

DEFAULT_LANGUAGE = "en"

_NO_KEY_MESSAGES = {
    "en": (
        "No API key configured. Please add ANTHROPIC_API_KEY or OPENAI_API_KEY "
        "to your .env file."
    ),
    "fr": (
        "Aucune clé API configurée. Veuillez ajouter ANTHROPIC_API_KEY ou "
        "OPENAI_API_KEY dans votre fichier .env"
    ),
    "ar": (
        "لم يتم تكوين مفتاح API. يرجى إضافة ANTHROPIC_API_KEY أو OPENAI_API_KEY "
        "في ملف .env"
    ),
}

_AUTH_MESSAGES = {
    "en": "API authentication failed. Please check your API keys in the .env file.",
    "fr": (
        "Erreur d'authentification API. Veuillez vérifier vos clés API "
        "dans le fichier .env"
    ),
    "ar": "فشل مصادقة API. يرجى التحقق من مفاتيح API في ملف .env",
}

_OFFLINE_MESSAGES = {
    "en": (
        "I apologize, but I am currently unable to connect. "
        "Please check your internet connection and try again."
    ),
    "fr": (
        "Je m'excuse, mais je ne parviens pas à me connecter. "
        "Veuillez vérifier votre connexion internet et réessayer."
    ),
    "ar": "عذراً، لا أستطيع الاتصال حالياً. يرجى التحقق من اتصالك بالإنترنت والمحاولة مرة أخرى.",
}

_ERROR_MESSAGES = {
    "en": "I apologize, but I encountered an error. Please try again.",
    "fr": "Je m'excuse, mais j'ai rencontré une erreur. Veuillez réessayer.",
    "ar": "عذراً، حدث خطأ. يرجى المحاولة مرة أخرى.",
}

_AUTH_HINT_RE = re.compile(r"401|403|auth|unauthorized|invalid.*key", re.IGNORECASE)


def detect_language(text: str) -> str:
    """Detect the language of user input.

    Priority: Arabic (script ratio) > French (stopwords, then accents) >
    English (default).

    Returns:
        One of ``"ar"``, ``"fr"`` or ``"en"``.
    """
    chars = re.sub(r"\s", "", text)
    if chars:
        arabic_count = len(ARABIC_CHAR_RE.findall(chars))
        if arabic_count / len(chars) > ARABIC_RATIO:
            return "ar"

    words = [word for word in WORD_SPLIT_RE.split(text.lower()) if word]
    french_hits = sum(1 for word in words if word in FRENCH_STOPWORDS)
    if french_hits >= FRENCH_STOPWORD_HITS or (
        words and french_hits / len(words) > FRENCH_STOPWORD_RATIO
    ):
        return "fr"

    if FRENCH_ACCENT_RE.search(text):
        return "fr"

    return DEFAULT_LANGUAGE


def _localized(messages: dict[str, str], lang: str) -> str:
    return messages.get(lang, messages[DEFAULT_LANGUAGE])


def get_offline_message(
    lang: str, error_hint: str | None = None, *, has_client: bool = True
) -> str:
    """Pick the user-facing message shown when generation fails.

    Args:
        lang: Language code of the user's question.
        error_hint: Text of the underlying error, used to spot auth failures.
        has_client: Whether an LLM client was configured at all.

    Returns:
        Localized message, falling back to English.
    """
    if not has_client:
        return _localized(_NO_KEY_MESSAGES, lang)
    if error_hint and _AUTH_HINT_RE.search(error_hint):
        return _localized(_AUTH_MESSAGES, lang)
    return _localized(_OFFLINE_MESSAGES, lang)


def get_error_message(lang: str) -> str:
    """Return the localized generic error message."""  # noqa: DOC201
    return _localized(_ERROR_MESSAGES, lang)
