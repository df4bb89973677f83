from __future__ import annotations

import re
from collections.abc import Iterable

# Tool, session and prompt-template noise that would otherwise inflate
# cross-session matches between unrelated entries.
STOP_WORDS = frozenset(
    {
        "auto",
        "observed",
        "task",
        "error",
        "bash",
        "read",
        "write",
        "edit",
        "glob",
        "grep",
        "skill",
        "session",
        "used",
        "tools",
        "file",
        "files",
        "the",
        "and",
        "for",
        "with",
        "from",
        "that",
        "this",
        "are",
        "was",
        "merged",
        "title",
        "content",
        "max",
        "chars",
        "combine",
        "key",
        "points",
        "remove",
        "duplicates",
        "should",
        "must",
        "will",
        "need",
        "create",
        "build",
        "implement",
        "feature",
        "include",
        "using",
        "make",
        "also",
        "each",
        "when",
        "have",
        "been",
        "into",
        "like",
        "some",
        "only",
        "about",
        "more",
        "than",
        "can",
        "could",
        "would",
    }
)

_PUNCT_RE = re.compile(r"[^\w\s]")
_CAMEL_LOWER_UPPER_RE = re.compile(r"([a-z])([A-Z])")
_CAMEL_ACRONYM_RE = re.compile(r"([A-Z]+)([A-Z][a-z])")


def split_camel_case(text: str) -> str:
    text = _CAMEL_LOWER_UPPER_RE.sub(r"\1 \2", text)
    return _CAMEL_ACRONYM_RE.sub(r"\1 \2", text)


def _filter(tokens: Iterable[str]) -> set[str]:
    return {tok for tok in tokens if len(tok) > 2 and tok not in STOP_WORDS}


def to_words(text: str, *, split_camel: bool = False) -> set[str]:
    """Tokenise text into the word set both measures compare.

    Lower-cases, strips punctuation, splits on whitespace and drops short
    tokens and stop words. `split_camel` breaks `parseConfigFile` into
    `parse config file` first; only the overlap coefficient asks for it.
    """
    if not text:
        return set()
    if split_camel:
        text = split_camel_case(text)
    cleaned = _PUNCT_RE.sub("", text.lower())
    return _filter(cleaned.split())


def jaccard(a: str, b: str) -> float:
    words_a = to_words(a)
    words_b = to_words(b)
    if not words_a or not words_b:
        return 0.0
    intersection = len(words_a & words_b)
    union = len(words_a | words_b)
    return intersection / union if union else 0.0


def overlap_coefficient(query: str, document: str) -> float:
    """|A & B| / min(|A|, |B|) over camel-split word sets.

    Tolerates a short query against a long document, which is the only
    place it is used (guide lookups).
    """
    words_q = to_words(query, split_camel=True)
    words_d = to_words(document, split_camel=True)
    if not words_q or not words_d:
        return 0.0
    smaller = min(len(words_q), len(words_d))
    return len(words_q & words_d) / smaller
