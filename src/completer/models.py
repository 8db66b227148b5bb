"""Data models shared by the page reader, API client, processor and controller."""

from __future__ import annotations

import json
import logging
from enum import Enum
from typing import Dict, List, Optional, Union

from pydantic import BaseModel, Field, ValidationError, model_validator


class ContentCategory(str, Enum):
    HTML = "html"
    VIDEO = "video"
    PDF = "pdf"
    ASSESSMENT = "assessment"
    UNKNOWN = "unknown"


class ModuleRecord(BaseModel):
    """Snapshot of one module marker, read fresh from the page."""

    index: int = Field(ge=0)
    locked: bool = False
    completed: bool = False
    category: ContentCategory = ContentCategory.UNKNOWN
    external_id: Optional[str] = None

    @model_validator(mode="after")
    def _completed_is_never_locked(self) -> "ModuleRecord":
        if self.completed and self.locked:
            self.locked = False
        return self


class APIResult(BaseModel):
    """Normalized outcome of a single progress API operation."""

    success: bool
    progress_changed: bool = False
    modules_completed: Optional[int] = None
    progress_level: Optional[float] = None
    error: Optional[str] = None

    @classmethod
    def failure(cls, error: str) -> "APIResult":
        return cls(success=False, error=error)


# --- Response bodies ---

class ParsedResponse(BaseModel):
    """Structured JSON body returned by the progress endpoints."""

    modules_completed: Optional[int] = None
    progress: Optional[float] = None


class UnparsedBody(BaseModel):
    """Body that could not be read as JSON; kept verbatim for logging."""

    text: str = ""


ResponseBody = Union[ParsedResponse, UnparsedBody]


def parse_response_body(text: str) -> ResponseBody:
    """Narrow a raw response body into ``ParsedResponse`` or ``UnparsedBody``.

    A JSON ``null`` carries no fields to read at all and is treated like a
    non-JSON body. Other JSON that is not an object, or whose fields have
    unusable types, yields an empty ``ParsedResponse`` so callers fall back
    to their own defaults.
    """
    try:
        payload = json.loads(text)
    except (TypeError, ValueError):
        return UnparsedBody(text=text or "")

    if payload is None:
        return UnparsedBody(text=text)
    if not isinstance(payload, dict):
        return ParsedResponse()

    try:
        return ParsedResponse.model_validate(payload)
    except ValidationError as e:
        logging.debug(f"Ignoring malformed progress fields in response: {e}")
        return ParsedResponse()


# --- Run bookkeeping ---

class ModuleOutcome(str, Enum):
    ALREADY_COMPLETED = "already_completed"
    SKIPPED = "skipped"
    COMPLETED = "completed"
    FAILED = "failed"
    NOT_FOUND = "not_found"


class ProgressSnapshot(BaseModel):
    running: bool
    completed: int
    total: int
    completed_indices: List[int] = Field(default_factory=list)

    @property
    def percentage(self) -> float:
        if self.total <= 0:
            return 0.0
        return round(self.completed / self.total * 100, 1)


class ReconciliationReport(BaseModel):
    local_count: int
    server_count: int
    total: int
    discrepancy: bool = False
    reload_scheduled: bool = False
    fetch_error: Optional[str] = None


class RunSummary(BaseModel):
    started: bool
    cancelled: bool = False
    error: Optional[str] = None
    outcomes: Dict[int, ModuleOutcome] = Field(default_factory=dict)
    reconciliation: Optional[ReconciliationReport] = None

    def count(self, outcome: ModuleOutcome) -> int:
        return sum(1 for value in self.outcomes.values() if value == outcome)
