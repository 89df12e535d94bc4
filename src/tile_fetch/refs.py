from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .keys import cache_key, with_params


@dataclass(frozen=True)
class ContentRef:
    """A leaf GLB asset discovered by the walker."""

    url: str
    api_key: str = ""
    session: Optional[str] = None

    @property
    def request_url(self) -> str:
        return with_params(self.url, {"key": self.api_key or None, "session": self.session})

    @property
    def cache_key(self) -> str:
        return cache_key(self.url)
