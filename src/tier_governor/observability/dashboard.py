"""
Live Dashboard - watch tier migration as it happens

Subscribes to a RunController and renders a Rich layout:
    - Tier Gauge: current tier, score band, efficiency, cost
    - Score Trace: rolling sparkline of the (damped) instability score
    - System Health: simulated CPU / GPU / memory / latency
    - Event Log: recent info, warning, critical and migration events
    - Token Stream: the tail of the generated text, coloured by tier

Policy: read-only. The dashboard never mutates controller state; it only
calls cancel() when the operator interrupts.
"""

import time
from collections import deque
from threading import Lock
from typing import Deque, Optional, Tuple

from rich import box
from rich.align import Align
from rich.console import Console
from rich.layout import Layout
from rich.live import Live
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from tier_governor.control.modes import TierThresholds
from tier_governor.control.tiers import Tier
from tier_governor.events import Event, EventKind
from tier_governor.runner import RunController, RunStatus, Update
from tier_governor.state import Record, RunConfig
from tier_governor.telemetry import RunSummary, ScoreBand, SystemHealth, classify_score


TIER_COLORS = {
    Tier.EDGE: "green",
    Tier.CONTROL: "yellow",
    Tier.CLOUD: "magenta",
}

BAND_COLORS = {
    ScoreBand.STABLE: "green",
    ScoreBand.PLATEAU: "yellow",
    ScoreBand.CRITICAL: "red",
}


# =============================================================================
# Tier Gauge
# =============================================================================

class TierGauge:
    """Current tier and headline metrics."""

    def render(
        self,
        summary: RunSummary,
        thresholds: Optional[TierThresholds],
        status: RunStatus,
    ) -> Panel:
        tier = summary.current_tier
        color = TIER_COLORS[tier]

        content = Table.grid(padding=(0, 1))
        content.add_column(justify="right", style="bold")
        content.add_column(justify="left")

        content.add_row("Status:", status.name)
        content.add_row("Tier:", f"[bold {color}]{tier.value}[/]")

        if thresholds is not None:
            band = classify_score(summary.current_score, thresholds)
            band_color = BAND_COLORS[band]
            content.add_row(
                "Score:",
                f"[{band_color}]{summary.current_score:.2f}[/] [dim]({band.value})[/]",
            )
            content.add_row(
                "Thresholds:",
                f"[dim]det {thresholds.det_threshold:.2f} / esc {thresholds.score_threshold:.2f}[/]",
            )
        else:
            content.add_row("Score:", f"{summary.current_score:.2f}")

        content.add_row("Efficiency:", f"{summary.current_efficiency:.3f}")
        content.add_row("Energy:", f"{summary.total_cost:.1f} J")
        content.add_row("Per unit:", f"{summary.mean_cost_per_unit:.2f} J")
        content.add_row("Escalations:", str(summary.escalations))

        return Panel(
            Align.center(content, vertical="middle"),
            title="[bold]Tier Gauge[/]",
            border_style=color,
        )


# =============================================================================
# Score Sparkline
# =============================================================================

class ScoreSparkline:
    """Rolling sparkline of the instability score."""

    def __init__(self, width: int = 60):
        self.history: Deque[Tuple[float, Tier]] = deque(maxlen=width)

    def update(self, score: float, tier: Tier):
        self.history.append((score, tier))

    def clear(self):
        self.history.clear()

    def render(self, thresholds: Optional[TierThresholds] = None) -> Panel:
        if not self.history:
            return Panel("[dim]No data[/]", title="Score Trace")

        scores = [s for s, _ in self.history]
        top = max(max(scores), thresholds.score_threshold if thresholds else 0.0, 1e-9)

        chars = " ▁▂▃▄▅▆▇█"
        spark = ""
        for score, tier in self.history:
            idx = int(min(1.0, score / top) * (len(chars) - 1))
            spark += f"[{TIER_COLORS[tier]}]{chars[idx]}[/]"

        current = scores[-1]
        avg = sum(scores) / len(scores)
        content = f"{spark}\n[dim]Current: {current:.2f} | Avg: {avg:.2f} | Max: {max(scores):.2f}[/]"

        return Panel(
            Align.center(content),
            title="[bold]Score Trace[/]",
            border_style="blue",
        )


# =============================================================================
# System Health
# =============================================================================

class HealthPanel:
    """Simulated host load bars."""

    def _bar(self, pct: float, color: str, width: int = 20) -> str:
        filled = int(max(0.0, min(100.0, pct)) / 100.0 * width)
        return f"[{color}]" + "█" * filled + "[/][dim]" + "░" * (width - filled) + "[/]"

    def render(self, health: SystemHealth) -> Panel:
        content = Table.grid(padding=(0, 1))
        content.add_column(justify="right", style="bold")
        content.add_column(justify="left")

        content.add_row("CPU:", f"{self._bar(health.cpu_pct, 'green')} {health.cpu_pct:.0f}%")
        content.add_row("GPU:", f"{self._bar(health.gpu_pct, 'magenta')} {health.gpu_pct:.0f}%")
        content.add_row("Memory:", f"{health.memory_gb:.1f} GB")
        content.add_row("Latency:", f"{health.latency_ms:.0f} ms")

        return Panel(content, title="[bold]System Health[/] [dim](simulated)[/]", border_style="cyan")


# =============================================================================
# Event Log
# =============================================================================

class EventLogPanel:
    """Scrolling log of recent events."""

    SYMBOLS = {
        EventKind.INFO: "[bold cyan]i[/]",
        EventKind.WARNING: "[bold yellow]⚠[/]",
        EventKind.CRITICAL: "[bold red]✗[/]",
        EventKind.MIGRATION: "[bold magenta]↑[/]",
    }

    def __init__(self, max_entries: int = 10):
        self.entries: Deque[str] = deque(maxlen=max_entries)

    def add(self, event: Event):
        symbol = self.SYMBOLS.get(event.kind, "[dim]·[/]")
        self.entries.append(f"{symbol} [dim]#{event.unit_index}:[/] {event.message}")

    def clear(self):
        self.entries.clear()

    def render(self) -> Panel:
        content = "\n".join(self.entries) if self.entries else "[dim]No events yet[/]"
        return Panel(content, title="[bold]Event Log[/]", border_style="white")


# =============================================================================
# Token Stream
# =============================================================================

class TokenStreamPanel:
    """Tail of the generated text, each unit coloured by its tier."""

    def __init__(self, max_units: int = 240):
        self.units: Deque[Tuple[str, Tier]] = deque(maxlen=max_units)

    def update(self, payload: str, tier: Tier):
        self.units.append((payload, tier))

    def clear(self):
        self.units.clear()

    def render(self) -> Panel:
        text = Text()
        for payload, tier in self.units:
            text.append(payload, style=TIER_COLORS[tier])
        if not self.units:
            text = Text("Waiting for tokens...", style="dim")
        return Panel(text, title="[bold]Token Stream[/]", border_style="white", box=box.ROUNDED)


# =============================================================================
# Dashboard
# =============================================================================

class LiveDashboard:
    """Collects controller updates and renders the layout on demand."""

    def __init__(self, controller: RunController):
        self.controller = controller
        self.gauge = TierGauge()
        self.sparkline = ScoreSparkline()
        self.health = HealthPanel()
        self.event_log = EventLogPanel()
        self.token_stream = TokenStreamPanel()
        self._lock = Lock()
        self._last_index = 0
        self._unsubscribe = controller.subscribe(self.update)

    def update(self, update: Update):
        with self._lock:
            if isinstance(update, Record):
                if update.index <= self._last_index:
                    # New run or replay started over.
                    self.sparkline.clear()
                    self.token_stream.clear()
                self._last_index = update.index
                self.sparkline.update(update.score, update.tier)
                self.token_stream.update(update.payload, update.tier)
            elif isinstance(update, Event):
                if update.unit_index == 0 and update.kind == EventKind.INFO:
                    self.event_log.clear()
                    self.sparkline.clear()
                    self.token_stream.clear()
                    self._last_index = 0
                self.event_log.add(update)

    def close(self):
        self._unsubscribe()

    def render(self) -> Layout:
        summary = self.controller.summary()
        thresholds = self.controller.thresholds

        layout = Layout()
        layout.split_column(
            Layout(name="top", size=12),
            Layout(name="middle", size=6),
            Layout(name="bottom", ratio=1),
        )
        layout["top"].split_row(
            Layout(name="gauge", ratio=1),
            Layout(name="health", ratio=1),
        )
        layout["bottom"].split_row(
            Layout(name="tokens", ratio=2),
            Layout(name="events", ratio=1),
        )

        with self._lock:
            layout["top"]["gauge"].update(
                self.gauge.render(summary, thresholds, self.controller.status)
            )
            layout["top"]["health"].update(self.health.render(self.controller.health))
            layout["middle"].update(self.sparkline.render(thresholds))
            layout["bottom"]["tokens"].update(self.token_stream.render())
            layout["bottom"]["events"].update(self.event_log.render())

        return layout


def run_live(
    controller: RunController,
    prompt: str,
    config: Optional[RunConfig] = None,
    console: Optional[Console] = None,
    replay: bool = False,
    refresh_per_second: int = 10,
) -> RunStatus:
    """Run (or replay) with the live dashboard until a terminal state."""
    console = console or Console()
    dashboard = LiveDashboard(controller)

    try:
        if replay:
            controller.replay()
        else:
            controller.start(prompt, config)

        with Live(dashboard.render(), refresh_per_second=refresh_per_second,
                  screen=True, console=console) as live:
            try:
                while controller.status.active:
                    live.update(dashboard.render())
                    time.sleep(1.0 / refresh_per_second)
            except KeyboardInterrupt:
                controller.cancel()
            status = controller.wait()
            live.update(dashboard.render())
    finally:
        dashboard.close()

    return status
