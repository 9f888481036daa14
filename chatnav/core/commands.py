"""chatnav.core.commands

Fixed table of global navigation commands.

Serves two purposes:
- The KNOWN_COMMAND tier matches canonicalized input against it
- It is the source of the always-present capability candidate group
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Tuple

from chatnav.context.candidates import CandidateOption
from chatnav.core.text_normalize import canonical_tokens, canonicalize_command, normalize


@dataclass(frozen=True)
class KnownCommand:
    command_id: str
    label: str
    action: str
    phrases: Tuple[str, ...]

    def to_option(self) -> CandidateOption:
        return CandidateOption(
            id=self.command_id,
            label=self.label,
            source_tag="capability",
            allowed_actions=(self.action,),
        )


KNOWN_COMMANDS: Tuple[KnownCommand, ...] = (
    KnownCommand("cmd:home", "Home", "navigate_home", ("home", "go home", "main page")),
    KnownCommand("cmd:dashboard", "Dashboard", "open_dashboard", ("dashboard", "my dashboard")),
    KnownCommand("cmd:recent", "Recent", "open_recent", ("recent", "recent items", "recently opened")),
    KnownCommand("cmd:links", "Links Panels", "open_links_panels", ("links panels", "links", "quick links")),
    KnownCommand("cmd:settings", "Settings", "open_settings", ("settings", "preferences", "personalization")),
    KnownCommand("cmd:search_notes", "Search notes", "search_notes", ("search notes", "find notes", "find a note")),
    KnownCommand("cmd:help", "Help", "show_help", ("help", "what can you do", "what can i say")),
)


def capability_options() -> List[CandidateOption]:
    return [cmd.to_option() for cmd in KNOWN_COMMANDS]


def match_command(text: str) -> Optional[KnownCommand]:
    """
    Match input against the command table.

    Exact normalized phrase first, then canonical token-set equality
    ("open my settings pls" -> settings, "show links panel" -> links panels).

    Returns:
        KnownCommand or None
    """
    normalized = normalize(text)
    if not normalized:
        return None

    canonical = canonicalize_command(normalized)
    for cmd in KNOWN_COMMANDS:
        if normalized in cmd.phrases or canonical in cmd.phrases:
            return cmd

    tokens = canonical_tokens(canonical)
    if not tokens:
        return None
    for cmd in KNOWN_COMMANDS:
        for phrase in cmd.phrases:
            if canonical_tokens(phrase) == tokens:
                return cmd
    return None
