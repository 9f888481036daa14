"""chatnav.core.text_normalize

Shared, deterministic text normalization for classification and matching.

The classifier and the resolver must agree on how a phrase is tokenized,
otherwise an input judged selection-like could fail to match the same label
it was judged against. Everything here is pure string work.

HARD RULES:
- No stemming. Morphological variants only through MICRO_ALIASES.
- Fuzzy matching only for tokens of length >= FUZZY_MIN_TOKEN_LEN.
"""

from __future__ import annotations

import re
from typing import Iterable, List, Set

# Tokens dropped before comparing input against labels
STOPWORDS: Set[str] = {
    "a", "an", "the", "my", "your", "our", "their",
    "pls", "please", "plz", "now", "thanks", "thank", "thx",
}

# Trailing filler stripped from the end of an utterance
TRAILING_FILLER: Set[str] = {
    "pls", "please", "plz", "thanks", "thx", "ty", "now", "then", "ok", "okay",
}

# Closed allow-list of singular/plural and morphological variants.
# Extend only when repeated phrasing fails to map.
MICRO_ALIASES = {
    "panel": "panel",
    "panels": "panel",
    "widget": "widget",
    "widgets": "widget",
    "link": "links",
    "links": "links",
    "workspace": "workspace",
    "workspaces": "workspace",
    "note": "note",
    "notes": "note",
    "setting": "settings",
    "settings": "settings",
    "preference": "preferences",
    "preferences": "preferences",
    "personal": "personalization",
    "personalize": "personalization",
    "personalization": "personalization",
    "custom": "customization",
    "customize": "customization",
    "customization": "customization",
    "recents": "recent",
    "recent": "recent",
    "entry": "entry",
    "entries": "entry",
}

# Polite/verb prefixes, longest first so partial prefixes never win
_POLITE_PREFIX_RE = re.compile(
    r"^(?:hey\s+)?"
    r"(?:(?:can|could|would)\s+you\s+(?:please\s+|pls\s+)?|please\s+|pls\s+)?"
    r"(?:(?:open|show(?:\s+me)?|view|go\s+to|launch|bring\s+up|take\s+me\s+to)\b)?\s*",
    re.IGNORECASE,
)

_LEADING_ARTICLE_RE = re.compile(r"^(?:the|a|an)\s+", re.IGNORECASE)

FUZZY_MIN_TOKEN_LEN = 4
FUZZY_MAX_DISTANCE = 2


def normalize(text: str) -> str:
    """
    Lowercase, collapse punctuation and whitespace, strip trailing filler.

    Args:
        text: Raw user text or label

    Returns:
        Normalized text ("" for empty input)
    """
    if not text:
        return ""

    lowered = text.lower().strip()
    # Apostrophes vanish ("what's" -> "whats"), other punctuation becomes space
    lowered = lowered.replace("'", "").replace("’", "")
    lowered = re.sub(r"[^a-z0-9\s]", " ", lowered)
    tokens = lowered.split()

    while tokens and tokens[-1] in TRAILING_FILLER:
        tokens.pop()

    return " ".join(tokens)


def tokenize(text: str) -> List[str]:
    """Split normalized text into content tokens (stopwords removed)."""
    return [t for t in normalize(text).split() if t not in STOPWORDS]


def canonical_token(token: str) -> str:
    return MICRO_ALIASES.get(token, token)


def canonical_tokens(text: str) -> Set[str]:
    """Content tokens mapped through the micro-alias allow-list."""
    return {canonical_token(t) for t in tokenize(text)}


def label_tokens(label: str) -> Set[str]:
    """
    Alias tokens derived from a label: canonical forms plus the raw tokens,
    so "Links Panel D" matches both "link panel d" and "links panels d".
    """
    raw = tokenize(label)
    tokens = set(raw)
    tokens.update(canonical_token(t) for t in raw)
    return tokens


def canonicalize_command(text: str) -> str:
    """
    Canonicalize input for command/noun matching.

    Strips polite prefixes, command verbs, leading articles and trailing
    filler. Minimal and deterministic: only known prefixes are removed.

    Examples:
        "can you please open the links panel pls" -> "links panel"
        "show me recent" -> "recent"
    """
    normalized = normalize(text)
    if not normalized:
        return ""
    stripped = _POLITE_PREFIX_RE.sub("", normalized, count=1).strip()
    stripped = _LEADING_ARTICLE_RE.sub("", stripped).strip()
    return stripped or normalized


def levenshtein(a: str, b: str) -> int:
    """Classic edit distance (insert/delete/substitute, unit cost)."""
    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)

    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i]
        for j, cb in enumerate(b, start=1):
            cost = 0 if ca == cb else 1
            current.append(min(
                previous[j] + 1,
                current[j - 1] + 1,
                previous[j - 1] + cost,
            ))
        previous = current
    return previous[-1]


def fuzzy_token_match(token: str, candidates: Iterable[str]) -> bool:
    """
    True if token equals a candidate, or (both long enough) is within
    FUZZY_MAX_DISTANCE edits of one.
    """
    for cand in candidates:
        if token == cand:
            return True
        if (
            len(token) >= FUZZY_MIN_TOKEN_LEN
            and len(cand) >= FUZZY_MIN_TOKEN_LEN
            and levenshtein(token, cand) <= FUZZY_MAX_DISTANCE
        ):
            return True
    return False
