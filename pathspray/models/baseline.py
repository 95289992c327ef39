"""Response baseline and classification verdict models."""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional
from urllib.parse import urlsplit

from pydantic import BaseModel, ConfigDict, Field


class Baseline(BaseModel):
    """
    Structured, immutable view of a single HTTP response.

    Everything downstream (classification, dedup, output) reads these
    fields only; the raw httpx response never leaves the requester.
    """

    model_config = ConfigDict(frozen=True)

    url: str = Field(..., description="Request URL")
    path: str = Field(default="", description="Candidate that produced this request")
    host: str = ""
    status: int = 0
    length: int = 0
    body_signature: str = ""
    simhash: int = 0
    is_directory: bool = False
    title: str = ""
    content_type: str = ""
    redirect_url: str = ""
    elapsed: float = 0.0
    extracts: dict[str, list[str]] = Field(default_factory=dict)
    extra_meta: dict[str, Any] = Field(default_factory=dict)
    body: str = Field(default="", repr=False, exclude=True)

    @property
    def status_class(self) -> int:
        """Status family (2 for 2xx, 4 for 4xx, ...)."""
        return self.status // 100

    @property
    def hostname(self) -> str:
        """Host portion of the request URL."""
        return self.host or (urlsplit(self.url).hostname or "")

    def probe(self, fields: list[str]) -> str:
        """Render the selected fields as a single tab separated line."""
        values = []
        for name in fields:
            value: Optional[Any] = getattr(self, name, None)
            if value is None:
                value = self.extra_meta.get(name, "")
            values.append(str(value))
        return "\t".join(values)


class VerdictAction(str, Enum):
    """Where a classified baseline goes."""
    EMIT = "emit"
    DISCARD = "discard"
    FUZZY = "fuzzy"


class Verdict(BaseModel):
    """Result of classifying one baseline."""

    model_config = ConfigDict(frozen=True)

    action: VerdictAction
    recurse: bool = False
    reason: str = ""

    @property
    def is_emit(self) -> bool:
        return self.action == VerdictAction.EMIT

    @property
    def is_fuzzy(self) -> bool:
        return self.action == VerdictAction.FUZZY
