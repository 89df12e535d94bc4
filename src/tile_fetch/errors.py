from __future__ import annotations

from typing import Optional


class TileFetchError(RuntimeError):
    pass


class TransientFetchError(TileFetchError):
    """Network or HTTP failure for a single request; never retried here."""

    def __init__(self, message: str, *, url: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.url = url
        self.status_code = status_code
