"""
Payloads received from collaborators outside the engine.

- ExecutionResult: what the SQL runner reports for one attempt
- GeneratedContent: provenance of generated explanation text
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from src.tutoring.concepts import normalize_sql_error_subtype
from src.tutoring.events import ErrorEvent, ExecutionEvent


class ExecutionResult(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    successful: bool
    error_subtype_id: str | None = Field(default=None, alias="errorSubtypeId")
    concept_ids: tuple[str, ...] | None = Field(default=None, alias="conceptIds")
    error_message: str | None = Field(default=None, alias="errorMessage")

    def to_event(
        self,
        event_id: str,
        session_id: str,
        learner_id: str,
        timestamp: int,
        problem_id: str,
        query: str = "",
        policy_version: str | None = None,
    ) -> ExecutionEvent | ErrorEvent:
        """Turn the runner's report into an `execution` or `error` event."""
        common = {
            "id": event_id,
            "session_id": session_id,
            "learner_id": learner_id,
            "timestamp": timestamp,
            "problem_id": problem_id,
            "policy_version": policy_version,
            "concept_ids": self.concept_ids,
        }
        if self.successful:
            return ExecutionEvent(successful=True, **common)

        subtype = self.error_subtype_id
        if subtype is None and self.error_message:
            subtype = normalize_sql_error_subtype(self.error_message, query)
        return ErrorEvent(error_subtype_id=subtype, error=self.error_message, **common)


class GeneratedContent(BaseModel):
    """Generation provenance; the engine only records it."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    content: str
    model: str
    template_id: str = Field(alias="templateId")
