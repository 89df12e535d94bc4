from __future__ import annotations

import asyncio
from typing import Optional, Sequence

from geodesy import ECEFPoint


def _point(value: Sequence[float]) -> ECEFPoint:
    x, y, z = (float(v) for v in value)
    return x, y, z


class OriginCell:
    """Single-assignment holder for the run's shared origin.

    ``lock`` serializes the bake that decides the value; reads never need it
    because the value only ever goes from unset to set.
    """

    def __init__(self, initial: Optional[Sequence[float]] = None) -> None:
        self._value: Optional[ECEFPoint] = _point(initial) if initial is not None else None
        self._explicit = initial is not None
        self._lock = asyncio.Lock()

    @property
    def lock(self) -> asyncio.Lock:
        return self._lock

    @property
    def value(self) -> Optional[ECEFPoint]:
        return self._value

    @property
    def explicit(self) -> bool:
        return self._explicit

    def compare_and_set(self, expected: Optional[ECEFPoint], value: Sequence[float]) -> bool:
        if self._value != expected:
            return False
        self._value = _point(value)
        return True

    def set_once(self, value: Sequence[float]) -> ECEFPoint:
        point = _point(value)
        if self.compare_and_set(None, point):
            return point
        if self._value != point:
            raise RuntimeError(
                f"origin already set to {self._value}, refusing to overwrite with {point}"
            )
        return point
