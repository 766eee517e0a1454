"""Job-analysis processor: analyze a new job, attach past-work context, chain assignment."""

from __future__ import annotations

import logging

from jobflow.collaborators.base import AnalysisClient, ContextItem, ContextRetriever
from jobflow.lifecycle.repository import JobRepository
from jobflow.queue.models import TaskView
from jobflow.queue.payloads import JobAnalysisPayload

logger = logging.getLogger(__name__)

CONTEXT_TOP_K = 5


class JobAnalysisProcessor:
    """Store analysis for a job and enqueue its auto-assignment in the same transaction.

    Context retrieval is best-effort: a failing retriever is logged and the job
    is analyzed without context.
    """

    def __init__(
        self,
        *,
        jobs: JobRepository,
        analyzer: AnalysisClient,
        retriever: ContextRetriever | None = None,
        context_top_k: int = CONTEXT_TOP_K,
    ) -> None:
        self.jobs = jobs
        self.analyzer = analyzer
        self.retriever = retriever
        self.context_top_k = context_top_k

    def __call__(self, task: TaskView, payload: JobAnalysisPayload) -> dict[str, object]:
        logger.info("Analyzing job %s (task %s)", payload.job_id, task.task_id)
        self.jobs.require_job(payload.job_id)

        analysis = self.analyzer.analyze(
            title=payload.title,
            description=payload.description,
            category=payload.category,
        )
        context = self._retrieve_context(payload)
        auto_assign_task_id = self.jobs.record_analysis(
            payload.job_id,
            analysis=analysis.to_dict(),
            context=[item.to_dict() for item in context],
        )
        logger.info(
            "Job %s analyzed: complexity=%s skills=%s context=%d",
            payload.job_id,
            analysis.complexity,
            ", ".join(analysis.required_skills),
            len(context),
        )
        return {
            "job_id": payload.job_id,
            "complexity": analysis.complexity,
            "required_skills": analysis.required_skills,
            "context_items": len(context),
            "auto_assign_task_id": auto_assign_task_id,
        }

    def _retrieve_context(self, payload: JobAnalysisPayload) -> list[ContextItem]:
        if self.retriever is None:
            return []
        try:
            return self.retriever.retrieve(
                client_id=payload.client_id,
                title=payload.title,
                description=payload.description,
                top_k=self.context_top_k,
                exclude_job_id=payload.job_id,
            )
        except Exception as error:  # noqa: BLE001
            logger.warning("Context retrieval failed for job %s: %s", payload.job_id, error)
            return []
