"""Health event types and payload models.

Payload shapes are stored verbatim in health_events.event_data, so the
models keep field names exactly as written to the database. Event types
without a model accept any JSON object.
"""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, field_validator
from pydantic import ValidationError as PydanticValidationError

from .errors import ValidationError

EVENT_TYPES: tuple[str, ...] = (
    "mood",
    "medication",
    "symptom",
    "assessment",
    "vital",
    "treatment",
    "appointment",
    "note",
)

# Fixed write order for one daily check-in fan-out.
CHECKIN_EVENT_ORDER: tuple[str, ...] = ("mood", "medication", "symptom", "note")


class MoodPayload(BaseModel):
    model_config = ConfigDict(extra="allow")

    mood: str | None = None
    confidence: int | None = None
    anxiety_level: int | None = None
    note: str | None = None
    primary_concern: str | None = None
    injection_confidence: int | None = None
    partner_involved: Any = None


class MedicationPayload(BaseModel):
    """Daily status or single adherence record; adherence adds medication_id etc."""

    model_config = ConfigDict(extra="allow")

    status: Literal["taken", "missed"]
    missed_doses: int | None = None


class SymptomPayload(BaseModel):
    model_config = ConfigDict(extra="allow")

    symptoms: list[str]
    related_to: str | None = None

    @field_validator("symptoms")
    @classmethod
    def symptoms_not_empty(cls, v: list[str]) -> list[str]:
        if not v:
            raise ValueError("symptoms must not be empty")
        return v


class AssessmentPayload(BaseModel):
    model_config = ConfigDict(extra="allow")

    assessment_id: Any
    responses: dict[str, Any]
    scores: dict[str, Any]


_PAYLOAD_MODELS: dict[str, type[BaseModel]] = {
    "mood": MoodPayload,
    "medication": MedicationPayload,
    "symptom": SymptomPayload,
    "assessment": AssessmentPayload,
}


def validate_event_type(event_type: str) -> str:
    if event_type not in EVENT_TYPES:
        raise ValidationError(f"Invalid event type: {event_type!r}")
    return event_type


def validate_event_payload(event_type: str, payload: dict[str, Any]) -> dict[str, Any]:
    """Validate payload for event_type and return the dict to persist.

    Optional fields left unset are dropped so stored payloads only contain
    what the caller supplied.
    """
    validate_event_type(event_type)
    if not isinstance(payload, dict):
        raise ValidationError(f"{event_type} payload must be an object")

    model = _PAYLOAD_MODELS.get(event_type)
    if model is None:
        return dict(payload)
    try:
        parsed = model.model_validate(payload)
    except PydanticValidationError as exc:
        raise ValidationError(f"Invalid {event_type} payload: {exc}") from exc
    return parsed.model_dump(exclude_none=True)
