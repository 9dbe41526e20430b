#!/usr/bin/env python3
"""
History buffer
Fixed-capacity circular buffer of floating-base kinematics
"""

from collections import deque
from typing import Iterator

from ..exceptions import EmptyHistoryError
from ..utils.kinematics import Kinematics


class HistoryBuffer:
    """
    Last `capacity` published floating-base estimates, oldest first

    Appending to a full buffer silently drops the oldest entry.
    """

    def __init__(self, capacity: int):
        if capacity < 1:
            raise ValueError(f"History capacity must be at least 1, got {capacity}")
        self._entries = deque(maxlen=capacity)

    @property
    def capacity(self) -> int:
        return self._entries.maxlen

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[Kinematics]:
        return iter(self._entries)

    def __getitem__(self, index: int) -> Kinematics:
        if not self._entries:
            raise EmptyHistoryError("History buffer is empty")
        return self._entries[index]

    @property
    def is_full(self) -> bool:
        return len(self._entries) == self._entries.maxlen

    def append(self, kinematics: Kinematics):
        self._entries.append(kinematics)

    def oldest(self) -> Kinematics:
        if not self._entries:
            raise EmptyHistoryError("History buffer is empty")
        return self._entries[0]

    def latest(self) -> Kinematics:
        if not self._entries:
            raise EmptyHistoryError("History buffer is empty")
        return self._entries[-1]

    def clear(self):
        self._entries.clear()
