#!/usr/bin/env python3
"""
chatnav - conversational navigation arbitration core
Interactive demo: type chat messages against a demo workspace.

Usage:
    python run.py                    # Demo with model fallback via Ollama
    python run.py --llm off          # Deterministic only (arbitrator abstains)
    python run.py --one-widget       # Register only the Recent widget
    python run.py --log-level DEBUG  # Show grounding/resolver internals

In-session commands:
    :options   post the demo chat option list again
    :state     show latch and clarification state
    :quiet     toggle quiet mode (hide routing internals)
    :quit      exit
"""
import sys
import time
import argparse

from rich.table import Table

from chatnav.core.logger import console, init_logger, get_logger, set_quiet_mode
from chatnav.core.config import Config


DEMO_OPTIONS = [
    {"id": "panel_d", "label": "Links Panel D", "actions": ["open_panel"]},
    {"id": "panel_e", "label": "Links Panel E", "actions": ["open_panel"]},
    {"id": "notes_weekly", "label": "Weekly notes", "actions": ["open"]},
]


def _widget_payload(title: str, items, badges: bool = False) -> dict:
    return {
        "_version": Config.WIDGET_SCHEMA_VERSION,
        "title": title,
        "isVisible": True,
        "registeredAt": time.time(),
        "segments": [
            {
                "segmentId": f"{title.lower().replace(' ', '_')}_list",
                "segmentType": "list",
                "listLabel": title,
                "badgesEnabled": badges,
                "items": [
                    {
                        "itemId": item_id,
                        "label": label,
                        "actions": ["open"],
                        "badge": chr(ord("a") + i),
                        "badgeVisible": badges,
                    }
                    for i, (item_id, label) in enumerate(items)
                ],
            },
            {
                "segmentId": f"{title.lower().replace(' ', '_')}_ctx",
                "segmentType": "context",
                "summary": f"{title} widget",
                "currentView": "list",
            },
        ],
    }


def parse_args():
    """Parse command line arguments"""
    parser = argparse.ArgumentParser(
        description="chatnav - conversational navigation demo",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python run.py                     # Model fallback via Ollama
  python run.py --llm off           # Deterministic only
  python run.py --auto-execute      # Let validated model picks execute
        """
    )

    parser.add_argument(
        "--log-level",
        type=str,
        default=Config.LOG_LEVEL,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)"
    )

    parser.add_argument(
        "--quiet",
        action="store_true",
        help="Hide routing internals ([TELEMETRY], [LATCH], ...)"
    )

    parser.add_argument(
        "--llm",
        type=str,
        default=Config.LLM_MODE,
        choices=["ollama", "off"],
        help="Model fallback mode (default: ollama)"
    )

    parser.add_argument(
        "--ollama-model",
        type=str,
        default=Config.OLLAMA_MODEL,
        help=f"Ollama model name (default: {Config.OLLAMA_MODEL})"
    )

    parser.add_argument(
        "--ollama-url",
        type=str,
        default=Config.OLLAMA_BASE_URL,
        help=f"Ollama API base URL (default: {Config.OLLAMA_BASE_URL})"
    )

    parser.add_argument(
        "--timeout-ms",
        type=int,
        default=Config.ARBITER_TIMEOUT_MS,
        help=f"Arbitrator time box in ms (default: {Config.ARBITER_TIMEOUT_MS})"
    )

    parser.add_argument(
        "--auto-execute",
        action="store_true",
        help="Allow a validated model selection to execute directly"
    )

    parser.add_argument(
        "--one-widget",
        action="store_true",
        help="Register only the Recent widget"
    )

    return parser.parse_args()


def print_result(result) -> None:
    """Render one TurnResult"""
    style = {
        "execute": "bold green",
        "clarify": "bold yellow",
        "message": "cyan",
        "answer": "white",
    }.get(result.kind.value, "white")

    console.print(f"[{result.tier.value}] {result.kind.value}", style="dim", markup=False, highlight=False)
    if result.message and result.clarifier is None:
        console.print(result.message, style=style, markup=False, highlight=False)
    if result.clarifier is not None:
        table = Table(title=result.clarifier.question, show_header=False, title_style=style)
        table.add_column("#", style="bold")
        table.add_column("choice")
        table.add_column("id", style="dim")
        for i, choice in enumerate(result.clarifier.choices, start=1):
            table.add_row(str(i), choice.label, choice.id)
        console.print(table)
        console.print(
            f"session={result.clarifier.session_id} attempt={result.clarifier.attempt_number}",
            style="dim", markup=False, highlight=False,
        )


def main():
    """Main entry point"""
    args = parse_args()

    init_logger(args.log_level, quiet_mode=args.quiet)
    logger = get_logger()

    Config.LLM_MODE = args.llm
    Config.OLLAMA_MODEL = args.ollama_model
    Config.OLLAMA_BASE_URL = args.ollama_url
    Config.ARBITER_TIMEOUT_MS = args.timeout_ms
    Config.ARBITER_AUTO_EXECUTE = args.auto_execute

    # Print startup banner
    console.print("\n" + "=" * 60)
    console.print("  chatnav - navigation arbitration demo", style="bold")
    console.print("=" * 60)
    console.print(f"  LLM Mode: {args.llm}", markup=False)
    if args.llm == "ollama":
        console.print(f"  LLM Model: {args.ollama_model}", markup=False)
        console.print(f"  LLM URL: {args.ollama_url}", markup=False)
        console.print(f"  Time box: {Config.get_arbiter_timeout_sec():.2f}s", markup=False)
    console.print(f"  Auto-execute model picks: {args.auto_execute}", markup=False)
    console.print(f"  Log Level: {args.log_level}", markup=False)
    console.print("=" * 60 + "\n")

    from chatnav.brain.arbitrator import ConstrainedArbitrator
    from chatnav.core.orchestrator import TurnOrchestrator
    from chatnav.widgets.registry import WidgetSnapshotRegistry

    registry = WidgetSnapshotRegistry()
    registry.register("w_recent", _widget_payload(
        "Recent", [("r_alpha", "Project Alpha"), ("r_budget", "Budget 2024"), ("r_roadmap", "Roadmap")],
        badges=True,
    ))
    if not args.one_widget:
        registry.register("w_links", _widget_payload(
            "Links Panels", [("l_docs", "Team docs"), ("l_wiki", "Wiki home"), ("l_board", "Sprint board")],
        ))

    arbitrator = ConstrainedArbitrator()
    orchestrator = TurnOrchestrator(
        registry=registry,
        arbitrator=arbitrator,
        executor=lambda action: logger.info(f"[DEMO] executed {action.to_dict()}"),
    )
    orchestrator.show_options(DEMO_OPTIONS, title="Here are some panels:")
    console.print("Options posted: " + ", ".join(o["label"] for o in DEMO_OPTIONS), markup=False)

    try:
        _chat_loop(orchestrator, logger)
    finally:
        arbitrator.close()
    return 0


def _chat_loop(orchestrator, logger) -> None:
    quiet = Config.QUIET_MODE
    while True:
        try:
            text = console.input("[bold]you> [/bold]")
        except (EOFError, KeyboardInterrupt):
            console.print()
            logger.info("Shutdown requested by user")
            return

        text = text.strip()
        if not text:
            continue
        if text == ":quit":
            return
        if text == ":quiet":
            quiet = not quiet
            set_quiet_mode(quiet)
            console.print(f"Quiet mode {'on' if quiet else 'off'}.", style="dim")
            continue
        if text == ":options":
            orchestrator.show_options(DEMO_OPTIONS, title="Here are some panels:")
            console.print("Options posted again.", style="dim")
            continue
        if text == ":state":
            session = orchestrator.state.clarification
            console.print(f"latch={orchestrator.latch_state.describe()} turn={orchestrator.state.turn}", markup=False)
            console.print(f"clarification={session.to_dict() if session else None}", markup=False)
            continue

        print_result(orchestrator.handle_turn(text))


if __name__ == "__main__":
    sys.exit(main())
