"""Terminal rendering of tracker events using tqdm."""

from __future__ import annotations

import os
import sys
from typing import IO

from tqdm import tqdm

from spacecli.progress.models import ProgressEvent, ProgressEventType

BAR_FORMAT = "{desc} [{bar:25}] {percentage:3.0f}%{postfix}"


def progress_disabled() -> bool:
    """Whether progress output was turned off through the environment."""
    return os.environ.get("SPACE_DISABLE_PROGRESS") == "1"


class TqdmProgressRenderer:
    """Draws a weighted progress bar for a ProgressTracker.

    Subscribe an instance to a tracker. In a TTY the bar advances by each
    completed step's weight and shows the current operation as its postfix.
    Without a TTY (CI, pipes) it prints one ``[i/n] description...`` line
    per started step instead.
    """

    def __init__(self, file: IO[str] | None = None, tty: bool | None = None) -> None:
        self.file = file or sys.stderr
        self.tty = self.file.isatty() if tty is None else tty
        self._bar: tqdm | None = None

    def __call__(self, event: ProgressEvent) -> None:
        match event.event_type:
            case ProgressEventType.INITIALIZED:
                self._close()
                if self.tty:
                    self._bar = tqdm(
                        total=event.total_weight,
                        desc=event.title or "",
                        file=self.file,
                        bar_format=BAR_FORMAT,
                        leave=True,
                    )
            case ProgressEventType.STEP_STARTED:
                if self._bar is not None:
                    self._bar.set_postfix_str(event.message or "")
                elif event.step is not None:
                    self._write(f"[{event.index}/{event.total_steps}] {event.step.description}...")
            case ProgressEventType.OPERATION:
                if self._bar is not None:
                    self._bar.set_postfix_str(event.message or "")
            case ProgressEventType.STEP_COMPLETED:
                if self._bar is not None and event.step is not None:
                    self._bar.update(event.step.weight)
            case ProgressEventType.STEP_FAILED:
                self._close()
                self._write(f"Failed: {event.message}")
            case ProgressEventType.COMPLETED:
                if self._bar is not None:
                    self._bar.set_postfix_str("Complete")
                self._close()

    def pause(self) -> None:
        """Clear the bar so a prompt can use the line."""
        if self._bar is not None:
            self._bar.clear()

    def resume(self) -> None:
        """Redraw the bar after a prompt."""
        if self._bar is not None:
            self._bar.refresh()

    def _write(self, line: str) -> None:
        tqdm.write(line, file=self.file)

    def _close(self) -> None:
        if self._bar is not None:
            self._bar.close()
            self._bar = None
