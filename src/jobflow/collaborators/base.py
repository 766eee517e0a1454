"""Collaborator contracts consumed by processors and the job service."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Protocol


@dataclass(frozen=True, slots=True)
class AnalysisResult:
    """Structured job analysis stored on the job."""

    required_skills: list[str]
    complexity: str
    estimated_hours: float
    confidence: float

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True, slots=True)
class ContextItem:
    """Past work relevant to a new job."""

    job_id: str
    title: str
    summary: str
    score: float

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True, slots=True)
class QaVerdict:
    """Pass/fail verdict from deliverable quality checks."""

    passed: bool
    score: float = 1.0
    issues: list[str] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class OutgoingMessage:
    """Rendered notification addressed to one recipient."""

    user_id: str
    address: str
    event_type: str
    subject: str
    body: str


class AnalysisClient(Protocol):
    def analyze(self, *, title: str, description: str, category: str) -> AnalysisResult: ...


class ContextRetriever(Protocol):
    def retrieve(
        self,
        *,
        client_id: str,
        title: str,
        description: str,
        top_k: int,
        exclude_job_id: str | None = None,
    ) -> list[ContextItem]: ...


class NotificationDelivery(Protocol):
    def send(self, message: OutgoingMessage) -> None:
        """Deliver or raise DeliveryError."""
        ...
