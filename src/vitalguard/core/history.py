"""
HistoryBuffer - Bounded record of the most recent readings.
"""
from __future__ import annotations

import logging
from collections import deque
from typing import Deque, Iterable, Optional, Tuple

from vitalguard.ingestion.models import Reading

logger = logging.getLogger(__name__)

MAX_HISTORY_POINTS = 50


class HistoryBuffer:
    """
    Last N readings in arrival order, oldest evicted first.

    A reading whose timestamp equals the newest stored one is dropped, so
    re-processing the same poll tick never produces adjacent duplicates.
    """

    def __init__(self, max_points: int = MAX_HISTORY_POINTS) -> None:
        if max_points < 1:
            raise ValueError(f"max_points must be positive, got {max_points}")
        self._max_points = max_points
        self._readings: Deque[Reading] = deque(maxlen=max_points)

    @property
    def max_points(self) -> int:
        return self._max_points

    @property
    def latest(self) -> Optional[Reading]:
        return self._readings[-1] if self._readings else None

    def append(self, reading: Reading) -> bool:
        """
        Append a reading.

        Returns:
            True if stored, False if dropped as a duplicate tick
        """
        last = self.latest
        if last is not None and last.timestamp == reading.timestamp:
            logger.debug(f"Dropped duplicate reading at {reading.timestamp}")
            return False

        self._readings.append(reading)
        return True

    def snapshot(self) -> Tuple[Reading, ...]:
        """Copy of the current contents, oldest first."""
        return tuple(self._readings)

    def load(self, readings: Iterable[Reading]) -> int:
        """Replace contents with restored readings. Returns count kept."""
        self._readings.clear()
        for reading in readings:
            self.append(reading)
        return len(self._readings)

    def clear(self) -> None:
        self._readings.clear()

    def __len__(self) -> int:
        return len(self._readings)
