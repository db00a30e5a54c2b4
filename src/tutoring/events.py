"""
Interaction Events.

Immutable, append-only records of what a learner did. Each event type is its
own pydantic model; together they form a union discriminated on `eventType`.
Field names on the wire are camelCase (`sessionId`, `helpRequestIndex`, ...),
attributes are snake_case.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from src.tutoring.errors import ValidationError


class EventType(str, Enum):
    """The fixed set of interaction event types."""

    CODE_CHANGE = "code_change"
    EXECUTION = "execution"
    ERROR = "error"
    HINT_REQUEST = "hint_request"
    HINT_VIEW = "hint_view"
    EXPLANATION_VIEW = "explanation_view"
    TEXTBOOK_ADD = "textbook_add"
    TEXTBOOK_UPDATE = "textbook_update"


def _require_text(value: str) -> str:
    if not value.strip():
        raise ValueError("must be a non-empty string")
    return value


NonEmptyStr = Annotated[str, AfterValidator(_require_text)]
HelpIndex = Annotated[int, Field(ge=1)]


class BaseEvent(BaseModel):
    """Fields shared by every interaction event."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    id: NonEmptyStr
    session_id: NonEmptyStr = Field(alias="sessionId")
    learner_id: NonEmptyStr = Field(alias="learnerId")
    timestamp: int = Field(ge=0, description="Milliseconds, monotonic per source")
    problem_id: str = Field(default="", alias="problemId")
    policy_version: str | None = Field(default=None, alias="policyVersion")

    @property
    def kind(self) -> EventType:
        return EventType(self.event_type)  # type: ignore[attr-defined]

    def to_wire(self) -> dict[str, Any]:
        """Dump with camelCase names, omitting unset optional fields."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class CodeChangeEvent(BaseEvent):
    event_type: Literal["code_change"] = Field(default="code_change", alias="eventType")
    code: str | None = None


class ExecutionEvent(BaseEvent):
    event_type: Literal["execution"] = Field(default="execution", alias="eventType")
    successful: bool
    concept_ids: tuple[str, ...] | None = Field(default=None, alias="conceptIds")


class ErrorEvent(BaseEvent):
    event_type: Literal["error"] = Field(default="error", alias="eventType")
    error_subtype_id: str | None = Field(default=None, alias="errorSubtypeId")
    error: str | None = Field(default=None, description="Raw error message text")
    concept_ids: tuple[str, ...] | None = Field(default=None, alias="conceptIds")


class HintRequestEvent(BaseEvent):
    event_type: Literal["hint_request"] = Field(default="hint_request", alias="eventType")
    help_request_index: HelpIndex | None = Field(default=None, alias="helpRequestIndex")
    error_subtype_id: str | None = Field(default=None, alias="errorSubtypeId")


class HintViewEvent(BaseEvent):
    event_type: Literal["hint_view"] = Field(default="hint_view", alias="eventType")
    hint_level: int = Field(alias="hintLevel", ge=1, le=3)
    help_request_index: HelpIndex = Field(alias="helpRequestIndex")
    error_subtype_id: str | None = Field(default=None, alias="errorSubtypeId")
    hint_text: str | None = Field(default=None, alias="hintText")


class ExplanationViewEvent(BaseEvent):
    event_type: Literal["explanation_view"] = Field(default="explanation_view", alias="eventType")
    help_request_index: HelpIndex | None = Field(default=None, alias="helpRequestIndex")
    error_subtype_id: str | None = Field(default=None, alias="errorSubtypeId")


class TextbookAddEvent(BaseEvent):
    event_type: Literal["textbook_add"] = Field(default="textbook_add", alias="eventType")
    concept_ids: tuple[str, ...] | None = Field(default=None, alias="conceptIds")
    note_id: str | None = Field(default=None, alias="noteId")


class TextbookUpdateEvent(BaseEvent):
    event_type: Literal["textbook_update"] = Field(default="textbook_update", alias="eventType")
    concept_ids: tuple[str, ...] | None = Field(default=None, alias="conceptIds")
    note_id: str | None = Field(default=None, alias="noteId")


InteractionEvent = Annotated[
    Union[
        CodeChangeEvent,
        ExecutionEvent,
        ErrorEvent,
        HintRequestEvent,
        HintViewEvent,
        ExplanationViewEvent,
        TextbookAddEvent,
        TextbookUpdateEvent,
    ],
    Field(discriminator="event_type"),
]

_EVENT_ADAPTER: TypeAdapter[InteractionEvent] = TypeAdapter(InteractionEvent)


def _describe(exc: PydanticValidationError) -> list[str]:
    problems = []
    for err in exc.errors():
        location = ".".join(str(part) for part in err.get("loc", ())) or "event"
        problems.append(f"{location}: {err.get('msg', 'invalid')}")
    return problems


def parse_event(data: BaseEvent | Mapping[str, Any]) -> InteractionEvent:
    """
    Validate raw event data into its typed variant.

    Args:
        data: An already-typed event or a wire-format mapping

    Returns:
        The typed, immutable event

    Raises:
        ValidationError: If the shape, type tag or field ranges are invalid
    """
    if isinstance(data, BaseEvent):
        return data  # type: ignore[return-value]
    if not isinstance(data, Mapping):
        raise ValidationError("Event must be a mapping", [f"got {type(data).__name__}"])

    event_type = data.get("eventType", data.get("event_type"))
    allowed = {t.value for t in EventType}
    if event_type not in allowed:
        raise ValidationError(
            "Unknown event type",
            [f"eventType: {event_type!r} not in {sorted(allowed)}"],
        )

    try:
        return _EVENT_ADAPTER.validate_python(dict(data))
    except PydanticValidationError as exc:
        raise ValidationError(f"Invalid {event_type} event", _describe(exc)) from exc


def parse_events(items: Iterable[BaseEvent | Mapping[str, Any]]) -> list[InteractionEvent]:
    """Validate a sequence of events, failing on the first invalid one."""
    return [parse_event(item) for item in items]


def order_events(events: Iterable[InteractionEvent]) -> list[InteractionEvent]:
    """Sort by (timestamp, insertion order); Python's sort is stable."""
    return sorted(events, key=lambda event: event.timestamp)
