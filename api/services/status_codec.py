"""
Status codec for the lifecycle payload carried in a case's ``notes`` field.

The field is a JSON object. The lifecycle keys (``case_status``,
``approved_by``, ``clinical_notes``, ...) live next to whatever else writers
put there, and free text written before the payload existed is kept under
``original_notes``. Readers go through ``decode`` and writers go through
``encode``; nothing should assign ``notes`` wholesale.
"""
import json
import logging
from typing import Any, Dict, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from ..exceptions import ValidationError
from ..models.cases import CaseStatus, LifecyclePayload

logger = logging.getLogger(__name__)

LEGACY_NOTES_KEY = "original_notes"

PAYLOAD_FIELDS = tuple(LifecyclePayload.model_fields)

# Enum-valued fields are matched case-insensitively
_NORMALIZED_FIELDS = ("case_status", "return_to_work_duty_type")


def _load_object(notes: Optional[str]) -> Optional[Dict[str, Any]]:
    """Parse notes as a JSON object, or None when it is anything else"""
    if not notes or not isinstance(notes, str):
        return None
    try:
        parsed = json.loads(notes)
    except ValueError:
        return None
    if not isinstance(parsed, dict):
        return None
    return parsed


def decode(notes: Optional[str]) -> Optional[LifecyclePayload]:
    """
    Decode the lifecycle payload from a notes value.

    Never raises. Returns None when notes is empty, not JSON, or not a JSON
    object. A known key holding an invalid value decodes to None while the
    other keys survive; unknown keys are ignored.
    """
    raw = _load_object(notes)
    if raw is None:
        return None

    known: Dict[str, Any] = {}
    for field in PAYLOAD_FIELDS:
        value = raw.get(field)
        if value is None or value == "":
            continue
        if field in _NORMALIZED_FIELDS and isinstance(value, str):
            value = value.strip().lower()
        known[field] = value

    try:
        return LifecyclePayload.model_validate(known)
    except PydanticValidationError as e:
        invalid = {err["loc"][0] for err in e.errors() if err.get("loc")}
        logger.debug("Dropping invalid lifecycle fields from notes: %s", sorted(invalid))
        for field in invalid:
            known.pop(field, None)

    try:
        return LifecyclePayload.model_validate(known)
    except PydanticValidationError:
        return LifecyclePayload()


def payload_from(fields: Dict[str, Any]) -> LifecyclePayload:
    """
    Build a payload for writing, e.g. before merging it with ``encode``.

    Raises:
        ValidationError: If a field is invalid, such as clinical notes over
            10,000 characters.
    """
    try:
        return LifecyclePayload.model_validate(fields)
    except PydanticValidationError as e:
        error = e.errors()[0]
        field = error["loc"][0] if error.get("loc") else "payload"
        raise ValidationError(f"Invalid {field}: {error['msg']}")


def encode(
    existing_notes: Optional[str],
    partial: Union[LifecyclePayload, Dict[str, Any]],
) -> str:
    """
    Merge the explicitly set fields of ``partial`` into the existing notes.

    Fields not set on ``partial`` keep their stored value, unrelated keys are
    preserved, and non-JSON notes are kept under ``original_notes``.

    Raises:
        ValidationError: If ``partial`` is a dict that is not a valid payload.
    """
    payload = partial if isinstance(partial, LifecyclePayload) else payload_from(partial)

    document = _load_object(existing_notes)
    if document is None:
        document = {}
        if existing_notes and existing_notes.strip():
            document[LEGACY_NOTES_KEY] = existing_notes

    document.update(payload.model_dump(mode="json", include=payload.model_fields_set))
    return json.dumps(document, ensure_ascii=False)


def case_status_of(notes: Optional[str]) -> CaseStatus:
    """Stored case status, or ``new`` when there is none"""
    payload = decode(notes)
    if payload is None or payload.case_status is None:
        return CaseStatus.NEW
    return payload.case_status


def legacy_notes(notes: Optional[str]) -> Optional[str]:
    """Free text that predates the payload, if any"""
    raw = _load_object(notes)
    if raw is None:
        return notes or None
    value = raw.get(LEGACY_NOTES_KEY)
    return value if isinstance(value, str) else None
