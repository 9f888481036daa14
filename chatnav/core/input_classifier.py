"""chatnav.core.input_classifier

Deterministic classification of a raw chat message.

Produces selection-likeness, command-likeness, question intent,
exit/rejection/repair/hesitation intent and explicit scope cues.
The `kind` is decided by the first check that fires, in this order:

    noise -> exit -> list rejection -> repair -> hesitation
          -> selection-like -> scope cue -> command -> question

The remaining signals (ordinal, scope cue, command/question flags) are
always computed so later stages can see e.g. a scope cue on a selection.

HARD RULES:
- Pure function of (text, context). No I/O, no session state.
- Unclassifiable input is NOISE, never SELECTION.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Sequence, Tuple

from chatnav.core.commands import match_command
from chatnav.core.text_normalize import (
    FUZZY_MIN_TOKEN_LEN,
    canonical_tokens,
    canonicalize_command,
    fuzzy_token_match,
    label_tokens,
    levenshtein,
    normalize,
)


class InputKind(Enum):
    NOISE = "noise"
    EXIT = "exit"
    LIST_REJECTION = "list_rejection"
    REPAIR = "repair"
    HESITATION = "hesitation"
    SELECTION = "selection"
    SCOPE_CUE = "scope_cue"
    COMMAND = "command"
    QUESTION = "question"


# Sentinel ordinal indices (resolved against the target list size)
LAST_ORDINAL = -1
OTHER_ORDINAL = -2

MAX_BOUNDED_NUMERAL = 12


# ============================================================================
# PHRASE PATTERNS
# ============================================================================
# All patterns run against normalize(text): lowercase, no punctuation,
# trailing filler removed.

EXIT_PATTERN = re.compile(
    r"^(?:(?:ok|okay|oh|no|actually)\s+)?"
    r"(?:cancel|stop|abort|quit|exit|nevermind|never\s+mind|forget\s+(?:it|about\s+it)"
    r"|(?:lets\s+)?start\s+over)"
    r"(?:\s+(?:it|that|this))?$"
)

EXPLICIT_EXIT_PATTERN = re.compile(r"\b(?:cancel|abort|quit|exit|start\s+over)\b")

AFFIRMATION_PATTERN = re.compile(
    r"^(?:yes|yeah|yep|yup|sure|ok|okay|k|ya|ye|yea|mhm|uh\s*huh|go\s+ahead|do\s+it|proceed"
    r"|correct|right|exactly|confirm|confirmed)(?:\s+please)?$"
)

KEEP_CHOOSING_PATTERN = re.compile(r"^(?:no|nope|nah|keep\s+(?:choosing|going)|stay|continue)$")

LIST_REJECTION_PATTERN = re.compile(
    r"^(?:no\s+)?(?:none(?:\s+of\s+(?:these|those|them|the\s+above))?"
    r"|neither(?:\s+(?:of\s+(?:these|those|them)|one))?"
    r"|not\s+(?:these|those|any\s+of\s+(?:these|those|them))"
    r"|something\s+else|nope|nah|no\s+thanks|no\s+thank\s+you)$"
)

REPAIR_PATTERN = re.compile(
    r"^(?:no\s+|nope\s+)?(?:"
    r"not\s+(?:that|this)(?:\s+one)?"
    r"|wrong\s+(?:one|option|choice|panel|item)"
    r"|i\s+meant?(?:\s+.+)?"
    r"|thats\s+(?:wrong|not\s+it|not\s+the\s+one)"
    r"|not\s+what\s+i\s+(?:meant|wanted|asked)"
    r")$"
)

HESITATION_PATTERN = re.compile(
    r"^(?:hmm+|um+|uh+|erm?|wait|hold\s+on|let\s+me\s+think|thinking"
    r"|give\s+me\s+a\s+(?:sec|second|minute|moment)|one\s+(?:sec|moment)"
    r"|(?:im\s+)?not\s+sure|i\s+dont\s+know|idk)"
    r"(?:\s+(?:about\s+it|a\s+bit|then|though|yet))?$"
)

RETURN_CUE_PATTERN = re.compile(
    r"\b(?:(?:go\s+)?back\s+to\s+(?:the\s+)?(?:earlier\s+|previous\s+)?(?:options|list|choices)"
    r"|return\s+to\s+(?:the\s+)?(?:options|list|choices)"
    r"|from\s+(?:the\s+)?earlier\s+options"
    r"|show\s+(?:me\s+)?(?:the\s+)?(?:options|choices)\s+again"
    r"|previous\s+options)\b"
)

CHAT_CUE_PATTERN = re.compile(
    r"\b(?:from\s+(?:the\s+)?chat\s+options?|from\s+(?:the\s+)?chat|in\s+(?:the\s+)?chat)\b"
)

WIDGET_GENERIC_CUE_PATTERN = re.compile(
    r"\b(?:from|in|on)\s+(?:the\s+|this\s+|active\s+|that\s+)?(?:widget|panel)\b"
)

COMMAND_VERBS = {
    "open", "show", "list", "view", "go", "back", "home", "create", "rename",
    "delete", "remove", "close", "find", "search", "launch", "navigate", "add",
}

QUESTION_START_WORDS = {
    "what", "how", "where", "when", "why", "who", "which", "can", "could",
    "would", "should", "is", "are", "do", "does", "did", "tell", "explain",
    "help", "whats",
}

_ORDINAL_WORDS = {
    "first": 0, "1st": 0,
    "second": 1, "2nd": 1,
    "third": 2, "3rd": 2,
    "fourth": 3, "4th": 3,
    "fifth": 4, "5th": 4,
    "sixth": 5, "6th": 5,
    "seventh": 6, "7th": 6,
    "eighth": 7, "8th": 7,
    "ninth": 8, "9th": 8,
    "tenth": 9, "10th": 9,
    "last": LAST_ORDINAL,
}

_NUMBER_WORDS = {
    "one": 0, "two": 1, "three": 2, "four": 3, "five": 4,
    "six": 5, "seven": 6, "eight": 7, "nine": 8, "ten": 9,
}

# Canonical ordinals eligible for per-token typo correction
_FUZZY_ORDINAL_TARGETS = ["first", "second", "third", "fourth", "fifth", "last"]

_SHORTHAND_RE = re.compile(r"\b(?:option|item|choice)\b")
_ONE_REF_RE = re.compile(r"^(?:the\s+)?(?:this|that)\s+one$")
_PRONOUN_REF_RE = re.compile(
    r"^(?:open|show|run|do|redo|reopen)\s+(?:it|that|this|them)(?:\s+again)?$"
)
_POSITIONAL_FIRST_RE = re.compile(r"^(?:the\s+)?(?:top|upper)(?:\s+one)?$")
_POSITIONAL_LAST_RE = re.compile(r"^(?:the\s+)?(?:bottom|lower)(?:\s+one)?$")
_OTHER_RE = re.compile(r"^(?:the\s+)?other(?:\s+one)?$")
_BADGE_RE = re.compile(r"^[a-e]$")

_VOWELS = set("aeiouy")


# ============================================================================
# RESULT TYPES
# ============================================================================

@dataclass(frozen=True)
class ScopeCue:
    """
    Explicit phrase naming which candidate source to use.

    Fields:
        scope: "chat" | "widget" | "none"
        cue_text: The matched cue phrase
        confidence: "high" when a cue matched, else "none"
        named_target_hint: Widget title named in the cue, if any
    """
    scope: str = "none"
    cue_text: Optional[str] = None
    confidence: str = "none"
    named_target_hint: Optional[str] = None

    @property
    def is_present(self) -> bool:
        return self.scope != "none"


NO_SCOPE_CUE = ScopeCue()


@dataclass
class ClassifierContext:
    """What the UI currently exposes; drives label and badge checks."""
    option_labels: List[str] = field(default_factory=list)
    badges_visible: bool = False
    widget_titles: List[str] = field(default_factory=list)


@dataclass
class Classification:
    kind: InputKind
    text: str
    normalized: str
    remainder: str = ""
    ordinal_index: Optional[int] = None
    badge: Optional[str] = None
    label_match_count: int = 0
    fuzzy_label_match: bool = False
    is_selection_like: bool = False
    is_pronoun_ref: bool = False
    is_command_like: bool = False
    has_question_intent: bool = False
    is_return_cue: bool = False
    scope_cue: ScopeCue = NO_SCOPE_CUE
    noise_reason: Optional[str] = None

    @property
    def has_ordinal(self) -> bool:
        return self.ordinal_index is not None

    def to_dict(self) -> dict:
        """Convert to dict for logging/debugging."""
        return {
            "kind": self.kind.value,
            "normalized": self.normalized,
            "ordinal": self.ordinal_index,
            "badge": self.badge,
            "label_matches": self.label_match_count,
            "selection_like": self.is_selection_like,
            "command_like": self.is_command_like,
            "question": self.has_question_intent,
            "scope": self.scope_cue.scope,
            "return_cue": self.is_return_cue,
        }


# ============================================================================
# ORDINALS
# ============================================================================

def normalize_ordinal_typos(normalized: str) -> str:
    """
    Repair common ordinal typos before selection matching.

    - "ffirst" -> "first" (repeated letters)
    - "secondoption" -> "second option" (concatenation)
    - "sedond", "thrid" -> "second", "third" (distance <= 2, token length >= 4)
    """
    tokens = []
    for token in normalized.split():
        m = re.match(r"^(first|second|third|fourth|fifth|last)(option|one)$", token)
        if m:
            tokens.extend([m.group(1), m.group(2)])
            continue
        tokens.append(token)

    repaired = []
    for token in tokens:
        if token in _ORDINAL_WORDS or len(token) < FUZZY_MIN_TOKEN_LEN or token.isdigit():
            repaired.append(token)
            continue
        deduped = re.sub(r"(.)\1+", r"\1", token)
        if deduped in _ORDINAL_WORDS:
            repaired.append(deduped)
            continue
        best: Optional[str] = None
        best_dist = 3
        for ordinal in _FUZZY_ORDINAL_TARGETS:
            dist = levenshtein(deduped, ordinal)
            if 0 < dist <= 2 and dist < best_dist:
                best, best_dist = ordinal, dist
        repaired.append(best or token)
    return " ".join(repaired)


def extract_ordinal(normalized: str) -> Optional[int]:
    """
    Extract a 0-based ordinal from a phrase.

    Returns LAST_ORDINAL for "last"/"bottom", OTHER_ORDINAL for "the other one",
    or None. Numerals are bounded to 1..MAX_BOUNDED_NUMERAL and only count
    in short inputs, so "open workspace 2024 notes" is not a selection.
    """
    text = normalize_ordinal_typos(normalized)
    if not text:
        return None

    if _POSITIONAL_FIRST_RE.match(text):
        return 0
    if _POSITIONAL_LAST_RE.match(text):
        return LAST_ORDINAL
    if _OTHER_RE.match(text):
        return OTHER_ORDINAL

    tokens = text.split()

    for token in tokens:
        if token in _ORDINAL_WORDS:
            return _ORDINAL_WORDS[token]

    m = re.search(r"\b(?:number|option|item|choice|num)\s+(\w+)\b", text)
    if m:
        value = m.group(1)
        if value in _NUMBER_WORDS:
            return _NUMBER_WORDS[value]
        if value.isdigit() and 1 <= int(value) <= MAX_BOUNDED_NUMERAL:
            return int(value) - 1

    if len(tokens) == 1 and tokens[0] in _NUMBER_WORDS:
        return _NUMBER_WORDS[tokens[0]]

    if len(tokens) <= 4:
        for token in tokens:
            if token.isdigit() and 1 <= int(token) <= MAX_BOUNDED_NUMERAL:
                return int(token) - 1

    return None


def resolve_ordinal(ordinal: int, count: int) -> Optional[int]:
    """Map an extracted ordinal onto a list of `count` items (None if out of range)."""
    if count <= 0:
        return None
    if ordinal == LAST_ORDINAL:
        return count - 1
    if ordinal == OTHER_ORDINAL:
        return 1 if count == 2 else None
    if 0 <= ordinal < count:
        return ordinal
    return None


def _is_bare_selection_token(normalized: str, badges_visible: bool) -> bool:
    """Short inputs that look like noise but are real selections ("2", "d")."""
    if re.fullmatch(r"[1-9]|1[0-2]", normalized):
        return True
    if normalized in _ORDINAL_WORDS:
        return True
    if badges_visible and _BADGE_RE.match(normalized):
        return True
    return False


# ============================================================================
# SCOPE CUES
# ============================================================================

def resolve_scope_cue(text: str, widget_titles: Sequence[str] = ()) -> ScopeCue:
    """
    Detect an explicit scope cue.

    Multi-cue precedence is chat before widget; the first family that
    matches wins regardless of cue position in the string.

    Args:
        text: Raw or normalized user text
        widget_titles: Titles of registered widgets (for named cues)

    Returns:
        ScopeCue (NO_SCOPE_CUE when nothing matched)
    """
    normalized = normalize(text)
    if not normalized:
        return NO_SCOPE_CUE

    m = RETURN_CUE_PATTERN.search(normalized) or CHAT_CUE_PATTERN.search(normalized)
    if m:
        return ScopeCue(scope="chat", cue_text=m.group(0), confidence="high")

    # Named widget cue, longest title first so "Links Panel D" beats "Links"
    for title in sorted(widget_titles, key=len, reverse=True):
        norm_title = normalize(title)
        if not norm_title:
            continue
        pattern = re.compile(
            r"\b(?:from|in|on)\s+(?:the\s+)?" + re.escape(norm_title) + r"(?:\s+(?:widget|panel|list))?\b"
        )
        m = pattern.search(normalized)
        if m:
            return ScopeCue(
                scope="widget",
                cue_text=m.group(0),
                confidence="high",
                named_target_hint=title,
            )

    m = WIDGET_GENERIC_CUE_PATTERN.search(normalized)
    if m:
        return ScopeCue(scope="widget", cue_text=m.group(0), confidence="high")

    return NO_SCOPE_CUE


def is_ambiguous_exit(normalized: str) -> bool:
    """True for "stop" or "never mind", which may only mean pause; "cancel" is unambiguous."""
    return bool(EXIT_PATTERN.match(normalized)) and not EXPLICIT_EXIT_PATTERN.search(normalized)


def _bare(text: str) -> str:
    # normalize() drops a trailing "ok", which is itself an answer here
    return " ".join(re.sub(r"[^a-z\s]", " ", (text or "").lower().replace("'", "")).split())


def is_affirmation(text: str) -> bool:
    return bool(AFFIRMATION_PATTERN.match(_bare(text)))


def is_keep_choosing(text: str) -> bool:
    return bool(KEEP_CHOOSING_PATTERN.match(_bare(text)))


# ============================================================================
# LABEL MATCHING
# ============================================================================

def count_label_matches(text: str, labels: Sequence[str]) -> Tuple[int, bool]:
    """
    Count labels whose tokens contain every canonical input token.

    Returns:
        (count, fuzzy) where fuzzy is True when the count came from the
        typo-tolerant pass because no exact token-subset match existed.
    """
    tokens = canonical_tokens(canonicalize_command(text))
    if not tokens or not labels:
        return 0, False

    exact = sum(1 for label in labels if tokens <= label_tokens(label))
    if exact:
        return exact, False

    fuzzy = 0
    for label in labels:
        ltoks = label_tokens(label)
        if all(fuzzy_token_match(t, ltoks) for t in tokens):
            fuzzy += 1
    return fuzzy, fuzzy > 0


# ============================================================================
# NOISE
# ============================================================================

def _noise_reason(raw: str, normalized: str) -> Optional[str]:
    compact = "".join(raw.split())
    if not compact or not normalized:
        return "empty"

    letters = [c for c in compact if c.isalpha()]
    if len(letters) / len(compact) < 0.5:
        return "low_alpha_ratio"

    tokens = normalized.split()
    if len(tokens) == 1 and len(tokens[0]) < 3:
        return "short_token"

    if not any(c.lower() in _VOWELS for c in letters):
        return "no_vowel"

    return None


# ============================================================================
# CLASSIFY
# ============================================================================

def _strip_cue(normalized: str, cue: ScopeCue) -> str:
    if not cue.cue_text:
        return normalized
    return " ".join(normalized.replace(cue.cue_text, " ").split())


def classify(text: str, context: Optional[ClassifierContext] = None) -> Classification:
    """
    Classify a raw chat message.

    Args:
        text: Raw user input
        context: Labels, badge visibility and widget titles currently shown

    Returns:
        Classification with `kind` set by the first matching check
    """
    ctx = context or ClassifierContext()
    raw = text or ""
    normalized = normalize(raw)

    scope_cue = resolve_scope_cue(normalized, ctx.widget_titles)
    remainder = _strip_cue(normalized, scope_cue)

    ordinal = extract_ordinal(remainder)
    badge = remainder if ctx.badges_visible and _BADGE_RE.match(remainder) else None
    label_count, fuzzy = count_label_matches(remainder, ctx.option_labels)
    pronoun_ref = bool(_PRONOUN_REF_RE.match(remainder))
    shorthand = bool(_SHORTHAND_RE.search(remainder) or _ONE_REF_RE.match(remainder))

    selection_like = (
        ordinal is not None
        or badge is not None
        or label_count > 0
        or pronoun_ref
        or shorthand
    )

    tokens = normalized.split()
    command_like = ordinal is None and (
        any(t in COMMAND_VERBS for t in tokens) or match_command(remainder) is not None
    )
    question = raw.strip().endswith("?") or (bool(tokens) and tokens[0] in QUESTION_START_WORDS)
    return_cue = bool(RETURN_CUE_PATTERN.search(normalized))

    result = Classification(
        kind=InputKind.NOISE,
        text=raw,
        normalized=normalized,
        remainder=remainder,
        ordinal_index=ordinal,
        badge=badge,
        label_match_count=label_count,
        fuzzy_label_match=fuzzy,
        is_selection_like=selection_like,
        is_pronoun_ref=pronoun_ref,
        is_command_like=command_like,
        has_question_intent=question,
        is_return_cue=return_cue,
        scope_cue=scope_cue,
    )

    if not (_is_bare_selection_token(normalized, ctx.badges_visible) or HESITATION_PATTERN.match(normalized)):
        reason = _noise_reason(raw, normalized)
        if reason:
            result.noise_reason = reason
            result.is_selection_like = False
            return result

    if EXIT_PATTERN.match(normalized):
        result.kind = InputKind.EXIT
    elif LIST_REJECTION_PATTERN.match(normalized):
        result.kind = InputKind.LIST_REJECTION
    elif REPAIR_PATTERN.match(normalized):
        result.kind = InputKind.REPAIR
    elif HESITATION_PATTERN.match(normalized):
        result.kind = InputKind.HESITATION
    elif selection_like:
        result.kind = InputKind.SELECTION
    elif scope_cue.is_present:
        result.kind = InputKind.SCOPE_CUE
    elif command_like:
        result.kind = InputKind.COMMAND
    elif question:
        result.kind = InputKind.QUESTION
    else:
        result.noise_reason = "unclassified"

    return result
