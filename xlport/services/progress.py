from __future__ import annotations

import sys
import threading
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from tqdm import tqdm
from tqdm.std import tqdm as TqdmType

"""Progress sinks and cooperative cancellation.

The engines call the sink synchronously on the worker thread after every
batch; implementations must not block. Marshalling to a UI thread, if any,
is the sink's own concern.

- NullProgressSink: discards everything (default when no sink is given)
- RecordingProgressSink: keeps every call in order (tests, diagnostics)
- TqdmProgressSink: single tqdm bar, enabled only when stdout is a TTY so CI
  logs are not filled with control sequences
"""

__all__ = [
    "ProgressSink",
    "NullProgressSink",
    "RecordingProgressSink",
    "TqdmProgressSink",
    "CancellationToken",
    "is_tty_enabled",
]


def is_tty_enabled() -> bool:
    """True if stdout is a TTY and a progress bar should be drawn."""
    return sys.stdout.isatty()


@runtime_checkable
class ProgressSink(Protocol):
    def update_progress(self, percent: int, message: str) -> None: ...

    def update_statistics(self, total: int, processed: int, success: int, failed: int) -> None: ...

    def update_current_row(self, row: int, total: int) -> None: ...

    def update_batch_info(self, batch_number: int, batch_size: int, total_batches: int) -> None: ...

    def set_status(self, text: str) -> None: ...


class NullProgressSink:
    def update_progress(self, percent: int, message: str) -> None:
        pass

    def update_statistics(self, total: int, processed: int, success: int, failed: int) -> None:
        pass

    def update_current_row(self, row: int, total: int) -> None:
        pass

    def update_batch_info(self, batch_number: int, batch_size: int, total_batches: int) -> None:
        pass

    def set_status(self, text: str) -> None:
        pass


@dataclass
class RecordingProgressSink:
    """Records (method, args) tuples in call order."""
    events: list[tuple[str, tuple[Any, ...]]] = field(default_factory=list)

    def update_progress(self, percent: int, message: str) -> None:
        self.events.append(("update_progress", (percent, message)))

    def update_statistics(self, total: int, processed: int, success: int, failed: int) -> None:
        self.events.append(("update_statistics", (total, processed, success, failed)))

    def update_current_row(self, row: int, total: int) -> None:
        self.events.append(("update_current_row", (row, total)))

    def update_batch_info(self, batch_number: int, batch_size: int, total_batches: int) -> None:
        self.events.append(("update_batch_info", (batch_number, batch_size, total_batches)))

    def set_status(self, text: str) -> None:
        self.events.append(("set_status", (text,)))

    def calls(self, name: str) -> list[tuple[Any, ...]]:
        return [args for method, args in self.events if method == name]


class TqdmProgressSink:
    """Row-level tqdm bar for one job.

    The bar is created lazily on the first statistics update (the total is
    only known once the source has been opened).
    """

    def __init__(self, description: str = "Importing") -> None:
        self.description = description
        self.enabled = is_tty_enabled()
        self.pbar: TqdmType[Any] | None = None
        self._processed = 0

    def _bar(self, total: int) -> TqdmType[Any] | None:
        if not self.enabled:
            return None
        if self.pbar is None:
            self.pbar = tqdm(
                total=total,
                desc=self.description,
                unit="row",
                leave=True,
                position=0,
                ncols=80,
                ascii=True,
            )
        return self.pbar

    def update_progress(self, percent: int, message: str) -> None:
        pass

    def update_statistics(self, total: int, processed: int, success: int, failed: int) -> None:
        bar = self._bar(total)
        if bar is None:
            return
        bar.update(processed - self._processed)
        self._processed = processed
        bar.set_postfix(ok=success, failed=failed)

    def update_current_row(self, row: int, total: int) -> None:
        pass

    def update_batch_info(self, batch_number: int, batch_size: int, total_batches: int) -> None:
        if self.pbar is not None:
            self.pbar.set_description(f"{self.description} (batch {batch_number}/{total_batches})")

    def set_status(self, text: str) -> None:
        self.close()

    def close(self) -> None:
        if self.pbar is not None:
            self.pbar.close()
            self.pbar = None

    def __enter__(self) -> TqdmProgressSink:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()


class CancellationToken:
    """Cooperative cancellation flag; engines check it between batches only."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()
