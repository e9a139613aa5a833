# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""
Live heart-rate display.
"""

from datetime import datetime
from typing import Optional

from rich.align import Align
from rich.console import Group
from rich.panel import Panel
from rich.text import Text

from ..models import CanonicalRecord
from ..session import DISPLAY_STATUS, SessionState

STATUS_STYLES = {
    "Monitoring": "green",
    "Connecting...": "yellow",
    "Failed": "red",
    "Stopped": "red",
}


class HeartRateDashboard:
    """Current BPM, last update, source and connection status."""

    def __init__(self, share_id: Optional[str] = None):
        self.share_id = share_id
        self.bpm: Optional[int] = None
        self.last_update: Optional[datetime] = None
        self.source = ""
        self.status = DISPLAY_STATUS[SessionState.IDLE]
        self.message: Optional[str] = None

    def update_record(self, record: CanonicalRecord) -> None:
        self.bpm = record.bpm
        self.last_update = record.end
        self.source = record.source

    def set_state(self, state: SessionState, error: Optional[Exception] = None) -> None:
        self.status = DISPLAY_STATUS[state]
        self.message = str(error) if error else None

    def render(self) -> Panel:
        if self.bpm is not None:
            reading = Text(f"{self.bpm}", style="bold red")
            reading.append(" BPM", style="dim")
        else:
            reading = Text("--", style="bold grey50")

        lines = [Align.center(reading)]

        if self.last_update is not None:
            local_time = self.last_update.astimezone().strftime('%H:%M:%S')
            detail = f"Last update: {local_time}"
            if self.source:
                detail += f"  |  Source: {self.source}"
            lines.append(Align.center(Text(detail, style="dim")))
        elif self.bpm is None:
            lines.append(Align.center(Text("Waiting for heart rate samples", style="dim")))

        style = STATUS_STYLES.get(self.status, "white")
        lines.append(Align.center(Text(f"● {self.status}", style=style)))

        if self.message:
            lines.append(Align.center(Text(self.message, style="red")))

        subtitle = f"share id: {self.share_id}" if self.share_id else None
        return Panel(
            Group(*lines),
            title="[bold cyan]Heart Rate Monitor[/bold cyan]",
            subtitle=subtitle,
            border_style="blue",
        )
