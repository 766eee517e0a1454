"""Context retrieval over a client's completed jobs by token overlap."""

from __future__ import annotations

import re

from jobflow.collaborators.base import ContextItem
from jobflow.lifecycle.repository import JobRepository

_TOKEN_RE = re.compile(r"[a-z0-9]{3,}")
_SUMMARY_CHARS = 280


class PastWorkRetriever:
    """Rank a client's completed jobs by Jaccard similarity to the new brief."""

    def __init__(self, jobs: JobRepository, *, min_score: float = 0.05) -> None:
        self.jobs = jobs
        self.min_score = min_score

    def retrieve(
        self,
        *,
        client_id: str,
        title: str,
        description: str,
        top_k: int,
        exclude_job_id: str | None = None,
    ) -> list[ContextItem]:
        query = _tokens(f"{title} {description}")
        if not query or top_k <= 0:
            return []

        scored: list[ContextItem] = []
        for job in self.jobs.completed_jobs_for_client(client_id, exclude_job_id=exclude_job_id):
            candidate = _tokens(f"{job.title} {job.description}")
            if not candidate:
                continue
            score = len(query & candidate) / len(query | candidate)
            if score < self.min_score:
                continue
            scored.append(
                ContextItem(
                    job_id=job.job_id,
                    title=job.title,
                    summary=job.description.strip()[:_SUMMARY_CHARS],
                    score=round(score, 4),
                ),
            )
        scored.sort(key=lambda item: (-item.score, item.job_id))
        return scored[:top_k]


def _tokens(text: str) -> set[str]:
    return set(_TOKEN_RE.findall(text.lower()))
