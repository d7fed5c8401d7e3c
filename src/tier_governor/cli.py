#!/usr/bin/env python3
"""
Tier Governor CLI

Commands:
    tiergov run                 Stream a prompt through the tier controller
    tiergov replay <file>       Replay an exported run at a fixed cadence
    tiergov modes               Show run modes and their thresholds
    tiergov profile             Show the tier cost model and profile path

Runs:
    tiergov run --source mock --mode standard --threshold 1.5
    tiergov run --source mock --mode aggressive --seed 7 --out run.json
    tiergov run --source ollama --model llama3 --prompt "Explain relativity."
    tiergov run --source openai --model gpt-4o-mini --live
    tiergov run --source mock --force-escalate

Override:
    kill -USR1 <pid>            Force Cloud escalation on the next unit

Replay:
    tiergov replay run.json
    tiergov replay run.json --live

Sources:
    mock        - Deterministic chunks (default)
    ollama      - Local models via Ollama (default: llama3)
    openai      - OpenAI API (requires OPENAI_API_KEY)
    anthropic   - Anthropic API (requires ANTHROPIC_API_KEY)

Usage:
    python -m tier_governor run --source mock -v
"""

import argparse
import json
import logging
import os
import signal
import sys
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import List, Optional

from rich.console import Console
from rich.table import Table
from rich.text import Text

from tier_governor.config_loader import get_config_path, load_cost_model, load_mode_presets
from tier_governor.control.modes import DEFAULT_SCORE_THRESHOLD, RunMode
from tier_governor.errors import TierGovernorError
from tier_governor.events import EventKind
from tier_governor.runner import RunController, RunStatus
from tier_governor.sources import DEFAULT_UNIT_SIZE, MockTokenSource, create_source
from tier_governor.state import Record, RunConfig
from tier_governor.telemetry import RunSummary

logger = logging.getLogger(__name__)

console = Console()

DEFAULT_PROMPT = "Explain the theory of relativity in simple terms."

TIER_STYLES = {"Edge": "green", "Control": "yellow", "Cloud": "magenta"}
EVENT_STYLES = {
    EventKind.INFO: "cyan",
    EventKind.WARNING: "yellow",
    EventKind.CRITICAL: "bold red",
    EventKind.MIGRATION: "magenta",
}


# =============================================================================
# Rendering helpers
# =============================================================================

def print_summary(summary: RunSummary, status: RunStatus):
    table = Table(title=f"Run summary ({status.name})", show_header=False)
    table.add_column("metric", style="bold")
    table.add_column("value")

    tier = summary.current_tier.value
    table.add_row("Units", str(summary.units))
    table.add_row("Final tier", f"[{TIER_STYLES[tier]}]{tier}[/]")
    table.add_row("Final score", f"{summary.current_score:.3f}")
    table.add_row("Efficiency", f"{summary.current_efficiency:.3f}")
    table.add_row("Total energy", f"{summary.total_cost:.1f} J")
    table.add_row("Energy / unit", f"{summary.mean_cost_per_unit:.2f} J")
    table.add_row("Escalations", str(summary.escalations))
    table.add_row("Migrations", ", ".join(
        f"#{m.index} {m.from_tier.value}->{m.to_tier.value}" for m in summary.migrations
    ) or "-")
    occupancy = ", ".join(
        f"{t.value}: {n}" for t, n in summary.tier_occupancy.items() if n
    )
    table.add_row("Occupancy", occupancy or "-")

    console.print(table)


def print_events(controller: RunController):
    table = Table(title="Events")
    table.add_column("#", justify="right")
    table.add_column("kind")
    table.add_column("message")

    for event in controller.events:
        style = EVENT_STYLES.get(event.kind, "white")
        table.add_row(str(event.unit_index), f"[{style}]{event.kind.value}[/]", event.message)

    console.print(table)


def print_stream(records: List[Record]):
    """Print the generated text with each unit coloured by tier."""
    text = Text()
    for record in records:
        text.append(record.payload, style=TIER_STYLES[record.tier.value])
    console.print(text)


def setup_logging(verbose: bool):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s - %(levelname)s - %(message)s",
    )


# =============================================================================
# Commands
# =============================================================================

@contextmanager
def escalation_signal(controller: RunController):
    """
    Route SIGUSR1 to request_escalation() for the duration of a run.

    Yields whether the handler was installed (POSIX main thread only).
    """
    if not hasattr(signal, "SIGUSR1") or threading.current_thread() is not threading.main_thread():
        yield False
        return

    def handler(signum, frame):
        accepted = controller.request_escalation()
        logger.info("SIGUSR1: escalation %s", "requested" if accepted else "ignored")

    previous = signal.signal(signal.SIGUSR1, handler)
    try:
        yield True
    finally:
        signal.signal(signal.SIGUSR1, previous)


def build_controller(args, source) -> RunController:
    profile = Path(args.profile) if getattr(args, "profile", None) else None
    if args.speed <= 0:
        raise ValueError(f"--speed must be positive, got {args.speed}")
    time_scale = 0.0 if args.no_pacing else 1.0 / args.speed
    return RunController(
        source,
        seed=getattr(args, "seed", None),
        time_scale=time_scale,
        unit_size=getattr(args, "unit_size", DEFAULT_UNIT_SIZE),
        presets=load_mode_presets(profile),
        cost_model=load_cost_model(profile),
    )


def cmd_run(args) -> int:
    config = RunConfig(
        mode=RunMode.parse(args.mode),
        score_threshold=args.threshold,
        force_escalate=args.force_escalate,
    )

    source_kwargs = {}
    if args.source == "mock":
        source_kwargs["n_chunks"] = args.chunks
    elif args.source == "ollama" and args.ollama_url:
        source_kwargs["base_url"] = args.ollama_url
    source = create_source(args.source, args.model, **source_kwargs)

    controller = build_controller(args, source)

    with escalation_signal(controller) as override:
        if args.live:
            from tier_governor.observability.dashboard import run_live
            status = run_live(controller, args.prompt, config, console=console)
        else:
            console.print(f"[dim]source={source.get_source_id()} mode={config.mode.value}[/]")
            if override:
                console.print(f"[dim]kill -USR1 {os.getpid()} forces Cloud escalation[/]")
            controller.start(args.prompt, config)
            try:
                status = controller.wait()
            except KeyboardInterrupt:
                controller.cancel()
                status = controller.wait()

    print_stream(list(controller.records))
    console.print()
    print_summary(controller.summary(), status)
    print_events(controller)

    if args.out:
        out = Path(args.out)
        out.write_text(json.dumps(controller.to_dict(), indent=2))
        console.print(f"[dim]Run written to {out}[/]")

    if status == RunStatus.FAILED:
        console.print(f"[red]Source failed: {controller.last_error}[/]")
        return 1
    return 0


def cmd_replay(args) -> int:
    path = Path(args.file)
    if not path.exists():
        console.print(f"[red]Error: run file not found: {path}[/]")
        return 1

    data = json.loads(path.read_text())
    records = [Record.from_dict(r) for r in data.get("records", [])]

    # Replays never touch the source.
    controller = build_controller(args, MockTokenSource(chunks=[]))
    controller.restore(records)

    if args.live:
        from tier_governor.observability.dashboard import run_live
        status = run_live(controller, "", replay=True, console=console)
    else:
        controller.replay()
        try:
            status = controller.wait()
        except KeyboardInterrupt:
            controller.cancel()
            status = controller.wait()

    print_stream(list(controller.records))
    console.print()
    print_summary(controller.summary(), status)
    return 0


def cmd_modes(args) -> int:
    presets = load_mode_presets(Path(args.profile) if args.profile else None)

    table = Table(title="Run modes")
    table.add_column("mode", style="bold", no_wrap=True)
    table.add_column("escalate at", justify="right")
    table.add_column("control at", justify="right")
    table.add_column("migrations")
    table.add_column("description")

    for mode, preset in presets.items():
        thresholds = preset.resolve(args.threshold)
        note = "" if preset.score_threshold is not None else " [dim](configured)[/]"
        table.add_row(
            mode.value,
            f"{thresholds.score_threshold:.2f}{note}",
            f"{thresholds.det_threshold:.2f}",
            "yes" if preset.migrations_enabled else "[dim]frozen on Edge[/]",
            preset.description,
        )

    console.print(table)
    return 0


def cmd_profile(args) -> int:
    path = Path(args.profile) if args.profile else get_config_path()
    cost_model = load_cost_model(path)

    console.print(f"Profile: {path} ({'found' if path.exists() else 'missing, using defaults'})")

    table = Table(title="Tier cost model")
    table.add_column("tier", style="bold")
    table.add_column("energy", justify="right")
    table.add_column("latency (ms)", justify="right")

    for tier, cost in cost_model.items():
        table.add_row(
            f"[{TIER_STYLES[tier.value]}]{tier.value}[/]",
            f"{cost.energy:.1f}",
            f"{cost.base_latency_ms:.0f} + U[0, {cost.latency_jitter_ms:.0f})",
        )

    console.print(table)
    return 0


# =============================================================================
# Entry point
# =============================================================================

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tiergov",
        description="Tier Governor - instability-driven tier migration for token streams",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    subparsers = parser.add_subparsers(dest="command")

    def add_pacing(p):
        p.add_argument("--speed", type=float, default=1.0, help="Pacing speed multiplier")
        p.add_argument("--no-pacing", action="store_true", help="Skip pacing sleeps")
        p.add_argument("--profile", help="Path to a tier profile JSON")
        p.add_argument("--live", action="store_true", help="Show the live dashboard")

    p_run = subparsers.add_parser("run", help="Stream a prompt through the tier controller")
    p_run.add_argument("--prompt", default=DEFAULT_PROMPT, help="Prompt to generate from")
    p_run.add_argument("-s", "--source", default="mock",
                       choices=["mock", "ollama", "openai", "anthropic"],
                       help="Token source")
    p_run.add_argument("-m", "--model", help="Model name for the source")
    p_run.add_argument("--ollama-url", help="Ollama base URL")
    p_run.add_argument("--chunks", type=int, default=60, help="Chunks for the mock source")
    p_run.add_argument("--mode", default=RunMode.STANDARD.value,
                       choices=[m.value for m in RunMode], help="Run mode")
    p_run.add_argument("-t", "--threshold", type=float, default=DEFAULT_SCORE_THRESHOLD,
                       help="Score threshold for standard mode (0.5-3.0)")
    p_run.add_argument("--force-escalate", action="store_true",
                       help="Escalate to Cloud on the first unit")
    p_run.add_argument("--seed", type=int, help="Random seed")
    p_run.add_argument("--unit-size", type=int, default=DEFAULT_UNIT_SIZE,
                       help="Characters per unit (1-4)")
    p_run.add_argument("-o", "--out", help="Write the run to a JSON file")
    add_pacing(p_run)

    p_replay = subparsers.add_parser("replay", help="Replay an exported run")
    p_replay.add_argument("file", help="Run JSON written by 'run --out'")
    add_pacing(p_replay)

    p_modes = subparsers.add_parser("modes", help="Show run modes and thresholds")
    p_modes.add_argument("-t", "--threshold", type=float, default=DEFAULT_SCORE_THRESHOLD,
                         help="Configured threshold used by standard mode")
    p_modes.add_argument("--profile", help="Path to a tier profile JSON")

    p_profile = subparsers.add_parser("profile", help="Show the tier cost model")
    p_profile.add_argument("--profile", help="Path to a tier profile JSON")

    return parser


COMMANDS = {
    "run": cmd_run,
    "replay": cmd_replay,
    "modes": cmd_modes,
    "profile": cmd_profile,
}


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 0

    setup_logging(args.verbose)

    try:
        return COMMANDS[args.command](args)
    except (TierGovernorError, ValueError) as e:
        console.print(f"[red]Error: {e}[/]")
        return 2


if __name__ == "__main__":
    sys.exit(main())
