from __future__ import annotations

import logging
import time
from dataclasses import asdict, dataclass
from typing import Any, Callable

logger = logging.getLogger(__name__)

DOWNLOAD_PROGRESS = "download_progress"
EXTRACTION_PROGRESS = "extraction_progress"

# Minimum time between two progress events of the same operation.
DEFAULT_INTERVAL_S = 0.1


@dataclass(frozen=True)
class ProgressEvent:
    name: str
    percent: int
    current: int
    total: int
    filename: str = ""
    stage: str | None = None

    def as_dict(self) -> dict[str, Any]:
        data = asdict(self)
        if self.stage is None:
            data.pop("stage")
        return data


ProgressListener = Callable[[ProgressEvent], None]


def percent_of(current: int, total: int) -> int:
    if total <= 0:
        return 0
    return max(0, min(100, int(current * 100 / total)))


def emit(listener: ProgressListener | None, event: ProgressEvent) -> None:
    if listener is None:
        return
    try:
        listener(event)
    except Exception:  # noqa: BLE001
        logger.debug("Progress listener failed for %s", event.name, exc_info=True)


class Throttle:
    """Time-based gate: ready() is true at most once per interval."""

    def __init__(self, interval_s: float = DEFAULT_INTERVAL_S, *, clock: Callable[[], float] = time.monotonic) -> None:
        self.interval_s = interval_s
        self._clock = clock
        self._last = clock()

    def ready(self) -> bool:
        now = self._clock()
        if now - self._last < self.interval_s:
            return False
        self._last = now
        return True
