"""Markdown cleanup for plain-text chat bubbles, in batch and streaming form.

Cleaning is line-local: emphasis and inline-code markers are removed,
em and en dashes become hyphens, heading and blockquote markers are dropped
from the start of a line, and horizontal rules become empty lines. Because
no rule looks across a newline, a streamed answer can be cleaned one line
at a time and the concatenated output equals ``strip_markdown`` of the full
text.
"""

import re

_INLINE_MARKERS = str.maketrans({"*": None, "`": None})
_DASHES = str.maketrans({"\N{EM DASH}": "-", "\N{EN DASH}": "-"})
_LINE_PREFIX_RE = re.compile(r"^(?:[#>][ \t]*)+")
_HORIZONTAL_RULE_RE = re.compile(r"^[ \t]*(?:[-_][ \t]*){3,}$")
# A partial line that may still turn into a horizontal rule.
_PENDING_RULE_RE = re.compile(r"^[-_ \t]*$")


def clean_line(line: str) -> str:
    """Clean a single line of model output.

    Returns:
        The line without markdown markers; empty for a horizontal rule.
    """
    line = line.translate(_INLINE_MARKERS).translate(_DASHES)
    line = _LINE_PREFIX_RE.sub("", line)
    if _HORIZONTAL_RULE_RE.match(line):
        return ""
    return line


def strip_markdown(text: str) -> str:
    """Remove markdown artifacts from ``text``.

    Idempotent: ``strip_markdown(strip_markdown(s)) == strip_markdown(s)``.

    Returns:
        Cleaned text with the same number of lines.
    """
    return "\n".join(clean_line(line) for line in text.split("\n"))


class MarkdownStreamCleaner:
    """Incrementally cleans streamed tokens and yields only new clean text.

    Text already returned by ``feed`` is never retracted: the pending
    partial line is held back while it could still become a horizontal rule.
    """

    def __init__(self) -> None:
        """Initialize an empty cleaner."""
        self.text = ""
        self._tail = ""
        self._emitted = ""

    def feed(self, token: str) -> str:
        """Add a raw token.

        Returns:
            The clean suffix that became final with this token, possibly "".
        """
        lines = (self._tail + token).split("\n")
        self._tail = lines.pop()

        parts = []
        for line in lines:
            parts.append(clean_line(line)[len(self._emitted):] + "\n")
            self._emitted = ""

        cleaned = clean_line(self._tail)
        if not _PENDING_RULE_RE.match(cleaned):
            parts.append(cleaned[len(self._emitted):])
            self._emitted = cleaned

        return self._record("".join(parts))

    def flush(self) -> str:
        """Release whatever was held back for the last partial line.

        Returns:
            The remaining clean text.
        """
        delta = clean_line(self._tail)[len(self._emitted):]
        self._tail = ""
        self._emitted = ""
        return self._record(delta)

    def _record(self, delta: str) -> str:
        self.text += delta
        return delta
