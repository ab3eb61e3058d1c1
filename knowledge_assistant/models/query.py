"""Query-side result models returned by the query pipeline."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class SourceReference(BaseModel):
    """A retrieved fragment cited in an answer."""

    model_config = ConfigDict(frozen=True)

    id: str
    content: str
    source_id: str
    similarity: float
    metadata: dict[str, Any] = Field(default_factory=dict)


class QueryResult(BaseModel):
    """Answer to one user question.

    ``sources`` is ranked by descending similarity and is empty when the
    fallback answer was returned.  ``metadata`` records the generation
    settings and how many fragments were retrieved and used.
    """

    model_config = ConfigDict(frozen=True)

    response: str
    conversation_id: str
    sources: list[SourceReference] = Field(default_factory=list)
    timestamp: datetime
    metadata: dict[str, Any] = Field(default_factory=dict)
