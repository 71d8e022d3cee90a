"""
CaseService - read side and downstream status changes for cases.

Cases are stored as worker exceptions. Every role view (worker, team,
WHS queue, clinician, executive summary) gets display status and activity
from this service, which decodes the notes payload with the status codec and
asks the lifecycle policy. Views must not re-derive either value themselves.
"""
import logging
import os
from collections import Counter
from datetime import date, datetime, timezone as dt_timezone
from typing import List, Optional

import pytz
from bson import ObjectId

from ..database import db, convert_id
from ..exceptions import NotFound, PersistenceError, ValidationError
from ..models.cases import (
    CaseResponse,
    CaseStatus,
    CaseSummary,
    CaseView,
    DisplayStatus,
    DutyType,
    LifecyclePayload,
)
from . import lifecycle_policy, status_codec

logger = logging.getLogger(__name__)

APP_TIMEZONE = os.getenv("APP_TIMEZONE", "Australia/Sydney")

# Attempts at a read-merge-write of notes before giving up on a busy case
_NOTES_WRITE_ATTEMPTS = 3


def ensure_utc_aware(dt: Optional[datetime]) -> Optional[datetime]:
    """Return a UTC-aware datetime. Naive datetimes are assumed to be UTC."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=dt_timezone.utc)
    return dt


def current_day(timezone: str = APP_TIMEZONE) -> date:
    """Today's calendar day in the portal's timezone"""
    return datetime.now(pytz.timezone(timezone)).date()


def day_to_datetime(day: Optional[date]) -> Optional[datetime]:
    """BSON has no date type; days are stored as midnight datetimes"""
    if day is None:
        return None
    return datetime.combine(day, datetime.min.time())


def parse_case_id(case_id: str) -> ObjectId:
    try:
        return ObjectId(case_id)
    except Exception:
        raise ValidationError("Invalid case ID format")


def case_to_response(document: dict) -> CaseResponse:
    """Convert a WorkerExceptions document into a CaseResponse"""
    data = convert_id(dict(document))
    for field in ("start_date", "end_date", "return_to_work_date"):
        data[field] = lifecycle_policy.to_day(data.get(field))
    for field in ("created_at", "updated_at"):
        data[field] = ensure_utc_aware(data.get(field))
    return CaseResponse(**data)


def case_number(case: CaseResponse) -> str:
    """Human-friendly case number, e.g. CASE-20250110-093000-65A1"""
    return f"CASE-{case.created_at.strftime('%Y%m%d-%H%M%S')}-{case.id[:4].upper()}"


class CaseService:
    """Case query surface plus the codec-safe writers used by clinicians and WHS."""

    # ---------------------------------------------------------------------------
    # Query surface
    # ---------------------------------------------------------------------------

    @staticmethod
    def lifecycle_payload(case: CaseResponse) -> Optional[LifecyclePayload]:
        return status_codec.decode(case.notes)

    @staticmethod
    def get_display_status(case: CaseResponse, today: Optional[date] = None) -> DisplayStatus:
        today = today or current_day()
        payload = status_codec.decode(case.notes)
        status = payload.case_status if payload else None
        return lifecycle_policy.display_status(
            status,
            case.is_active,
            lifecycle_policy.is_within_date_range(today, case.start_date, case.end_date),
            created_at=case.created_at,
            today=today,
        )

    @staticmethod
    def is_active(case: CaseResponse, today: Optional[date] = None) -> bool:
        payload = status_codec.decode(case.notes)
        return lifecycle_policy.is_currently_active(
            payload.case_status if payload else None,
            case.is_active,
            today or current_day(),
            case.start_date,
            case.end_date,
        )

    def project_case(self, case: CaseResponse, today: Optional[date] = None) -> CaseView:
        """Build the view every role renders for a case"""
        today = today or current_day()
        payload = status_codec.decode(case.notes) or LifecyclePayload()
        return CaseView(
            id=case.id,
            case_number=case_number(case),
            user_id=case.user_id,
            team_id=case.team_id,
            exception_type=case.exception_type,
            reason=case.reason,
            start_date=case.start_date,
            end_date=case.end_date,
            is_active=case.is_active,
            case_status=payload.case_status or CaseStatus.NEW,
            display_status=self.get_display_status(case, today),
            is_currently_active=self.is_active(case, today),
            approved_by=payload.approved_by,
            approved_at=payload.approved_at,
            clinical_notes=payload.clinical_notes,
            clinical_notes_updated_at=payload.clinical_notes_updated_at,
            legacy_notes=status_codec.legacy_notes(case.notes),
            # Payload wins over the columns, matching what clinicians last wrote
            return_to_work_duty_type=(
                payload.return_to_work_duty_type.value
                if payload.return_to_work_duty_type
                else case.return_to_work_duty_type
            ),
            return_to_work_date=payload.return_to_work_date or case.return_to_work_date,
            created_at=case.created_at,
        )

    async def get_case(self, case_id: str) -> CaseResponse:
        """
        Raises:
            ValidationError: If the id is malformed.
            NotFound: If no case has this id.
        """
        document = await db.WorkerExceptions.find_one({"_id": parse_case_id(case_id)})
        if not document:
            raise NotFound("Case not found")
        return case_to_response(document)

    async def _find_cases(self, query: dict) -> List[CaseResponse]:
        cases = []
        async for document in db.WorkerExceptions.find(query).sort("created_at", -1):
            cases.append(case_to_response(document))
        return cases

    async def list_worker_cases(self, worker_id: str, today: Optional[date] = None) -> List[CaseView]:
        today = today or current_day()
        return [self.project_case(c, today) for c in await self._find_cases({"user_id": worker_id})]

    async def list_team_cases(self, team_id: str, today: Optional[date] = None) -> List[CaseView]:
        today = today or current_day()
        return [self.project_case(c, today) for c in await self._find_cases({"team_id": team_id})]

    async def list_clinician_cases(self, clinician_id: str, today: Optional[date] = None) -> List[CaseView]:
        today = today or current_day()
        return [self.project_case(c, today) for c in await self._find_cases({"clinician_id": clinician_id})]

    async def list_whs_queue(self, today: Optional[date] = None) -> List[CaseView]:
        """Currently active cases with an active-category status"""
        today = today or current_day()
        queue = []
        for case in await self._find_cases({"is_active": True}):
            view = self.project_case(case, today)
            if view.is_currently_active and view.case_status in lifecycle_policy.ACTIVE_CASE_STATUSES:
                queue.append(view)
        return queue

    async def summarize_cases(self, team_id: Optional[str] = None, today: Optional[date] = None) -> CaseSummary:
        """Counts per lifecycle status; a case without a status counts as new"""
        today = today or current_day()
        query = {"team_id": team_id} if team_id else {}
        cases = await self._find_cases(query)

        by_status = Counter({status.value: 0 for status in CaseStatus})
        active = 0
        completed = 0
        for case in cases:
            status = status_codec.case_status_of(case.notes)
            by_status[status.value] += 1
            if lifecycle_policy.is_completed(status):
                completed += 1
            elif self.is_active(case, today):
                active += 1

        return CaseSummary(total=len(cases), active=active, completed=completed, by_status=dict(by_status))

    async def worker_has_active_case(self, worker_id: str, today: Optional[date] = None) -> bool:
        """A completed status counts as closed even while the flag is still true"""
        today = today or current_day()
        for case in await self._find_cases({"user_id": worker_id, "is_active": True}):
            if lifecycle_policy.is_completed(status_codec.case_status_of(case.notes)):
                continue
            if self.is_active(case, today):
                return True
        return False

    # ---------------------------------------------------------------------------
    # Downstream writers
    # ---------------------------------------------------------------------------

    async def _write_notes(self, case_id: str, build_update) -> CaseResponse:
        """
        Read-merge-write of a case's notes.

        ``build_update(case)`` returns the $set document, including the new
        notes. The write only applies if notes are unchanged since the read,
        so concurrent writers never clobber each other's payload keys.
        """
        object_id = parse_case_id(case_id)
        for _ in range(_NOTES_WRITE_ATTEMPTS):
            case = await self.get_case(case_id)
            update = build_update(case)
            update["updated_at"] = datetime.now(dt_timezone.utc)
            try:
                result = await db.WorkerExceptions.update_one(
                    {"_id": object_id, "notes": case.notes},
                    {"$set": update}
                )
            except Exception as e:
                logger.error("Error updating case %s: %s", case_id, e)
                raise PersistenceError("Failed to update case") from e
            if result.matched_count:
                return await self.get_case(case_id)
            logger.warning("Notes of case %s changed during update, retrying", case_id)

        raise PersistenceError("Case is being modified concurrently, please retry")

    async def update_case_status(
        self,
        case_id: str,
        new_status: CaseStatus,
        actor_id: str,
        actor_name: str,
        return_to_work_duty_type: Optional[DutyType] = None,
        return_to_work_date: Optional[date] = None,
        today: Optional[date] = None,
    ) -> CaseResponse:
        """
        Move a case to a new lifecycle status.

        Raises:
            ValidationError: Return-to-work fields missing or given for another status.
            InvalidStatusTransition: The lifecycle policy forbids the move.
            ValidationError: Closing while a rehabilitation plan is still active.
            NotFound: If the case does not exist.
        """
        today = today or current_day()
        new_status = CaseStatus(new_status)

        if new_status != CaseStatus.RETURN_TO_WORK and (return_to_work_duty_type or return_to_work_date):
            raise ValidationError("Return to work fields can only be set when status is return_to_work")
        if new_status == CaseStatus.RETURN_TO_WORK:
            if not return_to_work_duty_type:
                raise ValidationError("Return to work requires duty type")
            if not return_to_work_date:
                raise ValidationError("Return to work requires return date")

        if lifecycle_policy.is_completed(new_status):
            active_plan = await db.RehabilitationPlans.find_one({"exception_id": case_id, "status": "active"})
            if active_plan:
                raise ValidationError(
                    "Cannot update case status while active rehabilitation plans exist"
                )

        def build_update(case: CaseResponse) -> dict:
            payload = status_codec.decode(case.notes)
            current = payload.case_status if payload and payload.case_status else None
            if current is None and case.return_to_work_duty_type:
                current = CaseStatus.RETURN_TO_WORK
            lifecycle_policy.assert_transition(current or CaseStatus.NEW, new_status)

            now = datetime.now(dt_timezone.utc)
            changes = {"case_status": new_status, "case_status_updated_at": now}
            update = {}

            if lifecycle_policy.is_completed(new_status):
                changes["approved_by"] = actor_name
                changes["approved_at"] = now
                update["is_active"] = False

            if new_status == CaseStatus.CLOSED:
                if case.end_date is None:
                    update["end_date"] = day_to_datetime(today)
            elif new_status == CaseStatus.RETURN_TO_WORK:
                duty_type = DutyType(return_to_work_duty_type)
                changes["return_to_work_duty_type"] = duty_type
                changes["return_to_work_date"] = return_to_work_date
                update["end_date"] = day_to_datetime(today)
                update["return_to_work_duty_type"] = duty_type.value
                update["return_to_work_date"] = day_to_datetime(return_to_work_date)
            elif new_status == CaseStatus.IN_REHAB:
                update["is_active"] = True

            update["notes"] = status_codec.encode(case.notes, status_codec.payload_from(changes))
            return update

        updated = await self._write_notes(case_id, build_update)
        logger.info("Case %s moved to %s by %s", case_id, new_status.value, actor_id)
        return updated

    async def update_clinical_notes(self, case_id: str, clinical_notes: str, actor_id: str) -> CaseResponse:
        """Replace the clinical notes of a case, leaving the rest of the payload alone"""
        if not clinical_notes or not clinical_notes.strip():
            raise ValidationError("Clinical notes cannot be empty")

        changes = status_codec.payload_from({
            "clinical_notes": clinical_notes,
            "clinical_notes_updated_at": datetime.now(dt_timezone.utc),
        })

        def build_update(case: CaseResponse) -> dict:
            return {"notes": status_codec.encode(case.notes, changes)}

        updated = await self._write_notes(case_id, build_update)
        logger.info("Clinical notes of case %s updated by %s", case_id, actor_id)
        return updated
