"""Rich terminal renderer for Framestate state, snapshots and activities.

Color scheme
------------
- green   : INS
- yellow  : ALT
- red     : NUL
- dim     : bookkeeping (ordinals, timestamps)
"""

from __future__ import annotations

import json
import time
from typing import TYPE_CHECKING, Any

from rich.console import Console, Group
from rich.live import Live
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from framestate.models.activity import Operator

if TYPE_CHECKING:
    from framestate.core.read_coordinator import ReadCoordinator
    from framestate.models.activity import ActivityPage
    from framestate.models.snapshot import CurrentState, Record, Snapshot


_OPERATOR_STYLES: dict[Operator, str] = {
    Operator.INS: "bold green",
    Operator.ALT: "bold yellow",
    Operator.NUL: "bold red",
}

_MAX_VALUE_WIDTH = 40


def _short(value: Any) -> str:
    text = value if isinstance(value, str) else json.dumps(value, sort_keys=True)
    if len(text) > _MAX_VALUE_WIDTH:
        return text[: _MAX_VALUE_WIDTH - 3] + "..."
    return text


class StateRenderer:
    """Renders Framestate models as Rich terminal output.

    Parameters
    ----------
    console:
        Rich Console instance.  A new one is created if not provided.
    """

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    # ------------------------------------------------------------------
    # Current state
    # ------------------------------------------------------------------

    def render_state(self, state: CurrentState) -> Panel:
        """One table per frame plus a summary line."""
        parts: list[Any] = []
        for frame, records in state.data.items():
            parts.append(self._build_frame_table(frame, records))
            parts.append(Text(""))
        if not parts:
            parts.append(Text.from_markup("[dim]No frames yet.[/dim]"))

        snapshot_part = (
            f"{state.snapshot_ordinal}"
            if state.snapshot_ordinal is not None
            else "[yellow]none (full replay)[/yellow]"
        )
        summary = "  |  ".join([
            f"[bold]Through ordinal:[/bold] {state.last_activity_ordinal}",
            f"[bold]Snapshot:[/bold] {snapshot_part}",
            f"[bold]Tail:[/bold] {state.tail_count}",
            f"[bold]Records:[/bold] {sum(state.record_counts.values())}",
            f"[bold]Anomalies:[/bold] {state.anomaly_count}",
        ])
        parts.append(Text.from_markup(summary))

        return Panel(
            Group(*parts),
            title=f"[bold]Framestate[/bold] target={state.target}",
            subtitle=f"hash {state.data_hash[:12]}",
            border_style="blue",
            padding=(1, 2),
        )

    def _build_frame_table(self, frame: str, records: list[Record]) -> Table:
        table = Table(
            title=f"{frame} ({len(records)})",
            show_header=True,
            header_style="bold cyan",
            expand=True,
        )
        table.add_column("#", style="dim", justify="right", width=8)
        table.add_column("id", style="cyan", min_width=12)
        table.add_column("fields")
        table.add_column("updated", style="dim", width=10)

        for record in records:
            fields = ", ".join(
                f"{name}={_short(value)}" for name, value in sorted(record.fields.items())
            )
            updated = record.updated_at.strftime("%H:%M:%S") if record.updated_at else "-"
            table.add_row(str(record.creation_ordinal), record.id, fields or "-", updated)
        return table

    def print_state(self, state: CurrentState) -> None:
        self.console.print(self.render_state(state))

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    def render_snapshot_summary(self, snapshot: Snapshot | None) -> Panel:
        """Latest-snapshot metadata, or the explicit "none" result."""
        if snapshot is None:
            return Panel(
                "[yellow]none[/yellow] [dim]- no snapshot has been computed yet[/dim]",
                title="[bold]Latest snapshot[/bold]",
                border_style="yellow",
            )

        table = Table(show_header=True, header_style="bold cyan")
        table.add_column("frame")
        table.add_column("records", justify="right")
        for frame, count in snapshot.record_counts.items():
            table.add_row(frame, str(count))

        header = "\n".join([
            f"[bold]Snapshot:[/bold]     {snapshot.snapshot_id}",
            f"[bold]Target:[/bold]       {snapshot.target}",
            f"[bold]Ordinal:[/bold]      {snapshot.last_activity_ordinal}",
            f"[bold]Computed at:[/bold]  "
            f"{snapshot.computed_at.strftime('%Y-%m-%d %H:%M:%S UTC')}",
            f"[bold]Hash:[/bold]         {snapshot.data_hash}",
        ])
        return Panel(
            Group(Text.from_markup(header), Text(""), table),
            title="[bold]Latest snapshot[/bold]",
            border_style="green",
            padding=(1, 2),
        )

    # ------------------------------------------------------------------
    # Activities
    # ------------------------------------------------------------------

    def render_activities(self, page: ActivityPage) -> Table:
        table = Table(show_header=True, header_style="bold cyan", expand=True)
        table.add_column("ordinal", justify="right", style="dim")
        table.add_column("op", justify="center")
        table.add_column("frame")
        table.add_column("target", style="cyan")
        table.add_column("agent")
        table.add_column("payload")

        for activity in page.activities:
            style = _OPERATOR_STYLES[activity.operator]
            table.add_row(
                str(activity.ordinal),
                f"[{style}]{activity.operator.value}[/{style}]",
                activity.frame,
                activity.target,
                activity.agent,
                _short(activity.payload),
            )

        if page.next_cursor is not None:
            table.caption = f"more after ordinal {page.next_cursor}"
        return table

    # ------------------------------------------------------------------
    # Continuous live rendering
    # ------------------------------------------------------------------

    def render_live(self, reader: ReadCoordinator, *, refresh_hz: float = 1.0) -> None:
        """Re-read and redraw the current state until Ctrl+C."""
        interval = 1.0 / max(refresh_hz, 0.1)

        with Live(console=self.console, refresh_per_second=refresh_hz) as live:
            try:
                while True:
                    live.update(self.render_state(reader.get_current_state()))
                    time.sleep(interval)
            except KeyboardInterrupt:
                live.update(self.render_state(reader.get_current_state()))
