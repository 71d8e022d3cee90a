"""
NotificationService - in-app notifications for the incident approval workflow.

Delivery is best effort. Callers send after a transition has committed and
wrap each send in ``safe_send`` so a failed delivery becomes a warning on the
response instead of an error.
"""
import logging
from datetime import datetime, timezone as dt_timezone
from typing import Awaitable, List, Optional

from ..database import db
from ..models.notifications import NotificationInDB, NotificationType

logger = logging.getLogger(__name__)

_TYPE_WORDING = {
    "incident": "an incident",
    "near_miss": "a near-miss",
}


def _incident_wording(incident_type: str) -> str:
    return _TYPE_WORDING.get(incident_type, f"a {incident_type.replace('_', ' ')} incident")


class NotificationService:
    """Writes notification documents to the Notifications collection."""

    async def _insert(self, notifications: List[NotificationInDB]) -> None:
        docs = [n.model_dump(mode="json") for n in notifications]
        for doc, notification in zip(docs, notifications):
            doc["created_at"] = notification.created_at
        if len(docs) == 1:
            await db.Notifications.insert_one(docs[0])
        else:
            await db.Notifications.insert_many(docs)
        logger.info(
            "Sent %d notification(s) of type %s",
            len(docs),
            ", ".join(sorted({d["type"] for d in docs})),
        )

    async def notify_team_leader_pending_incident(
        self,
        team_leader_id: str,
        incident_id: str,
        worker_id: str,
        worker_name: str,
        worker_email: str,
        incident_type: str,
        severity: str,
        location: Optional[str] = None,
    ) -> None:
        """Approval-needed event for the team leader of the worker's team"""
        location_text = f" at {location}" if location else ""
        await self._insert([
            NotificationInDB(
                user_id=team_leader_id,
                type=NotificationType.INCIDENT_APPROVAL_NEEDED,
                title="Incident Approval Required",
                message=(
                    f"{worker_name} (Worker) reported {_incident_wording(incident_type)} "
                    f"with {severity.upper()} severity{location_text}. Please review and approve."
                ),
                data={
                    "incident_id": incident_id,
                    "worker_id": worker_id,
                    "worker_name": worker_name,
                    "worker_email": worker_email,
                    "incident_type": incident_type,
                    "severity": severity,
                    "location": location,
                    "reported_by": "worker",
                },
                created_at=datetime.now(dt_timezone.utc),
            )
        ])

    async def notify_worker_report_submitted(self, worker_id: str, incident_id: str, incident_type: str) -> None:
        await self._insert([
            NotificationInDB(
                user_id=worker_id,
                type=NotificationType.SYSTEM,
                title="Report Submitted",
                message=(
                    f"Your {incident_type.replace('_', ' ')} report has been submitted successfully. "
                    "Awaiting team leader approval."
                ),
                data={
                    "incident_id": incident_id,
                    "incident_type": incident_type,
                    "approval_status": "pending_approval",
                },
                created_at=datetime.now(dt_timezone.utc),
            )
        ])

    async def notify_incident_approved(
        self,
        worker_id: str,
        supervisor_id: Optional[str],
        incident_id: str,
        case_id: str,
        worker_name: str,
        approver_name: str,
    ) -> None:
        """Approval event for the worker and, if any, the team supervisor"""
        now = datetime.now(dt_timezone.utc)
        notifications = [
            NotificationInDB(
                user_id=worker_id,
                type=NotificationType.INCIDENT_APPROVED,
                title="Incident Report Approved",
                message=(
                    f"Your incident report has been approved by {approver_name} (Team Leader). "
                    "A case has been opened and you've been placed on medical leave."
                ),
                data={
                    "incident_id": incident_id,
                    "case_id": case_id,
                    "approver_name": approver_name,
                    "approved_by": "team_leader",
                },
                created_at=now,
            )
        ]
        if supervisor_id:
            notifications.append(
                NotificationInDB(
                    user_id=supervisor_id,
                    type=NotificationType.SYSTEM,
                    title="New Case Created",
                    message=(
                        f"{approver_name} (Team Leader) approved the incident report for "
                        f"{worker_name}. A case has been opened."
                    ),
                    data={
                        "incident_id": incident_id,
                        "case_id": case_id,
                        "worker_id": worker_id,
                        "worker_name": worker_name,
                        "approver_name": approver_name,
                        "approved_by": "team_leader",
                    },
                    created_at=now,
                )
            )
        await self._insert(notifications)

    async def notify_incident_rejected(
        self,
        worker_id: str,
        incident_id: str,
        rejection_reason: str,
        rejector_name: str,
    ) -> None:
        await self._insert([
            NotificationInDB(
                user_id=worker_id,
                type=NotificationType.INCIDENT_REJECTED,
                title="Incident Report Rejected",
                message=(
                    f"Your incident report was rejected by {rejector_name} (Team Leader). "
                    f"Reason: {rejection_reason}"
                ),
                data={
                    "incident_id": incident_id,
                    "rejection_reason": rejection_reason,
                    "rejector_name": rejector_name,
                    "rejected_by": "team_leader",
                },
                created_at=datetime.now(dt_timezone.utc),
            )
        ])

    @staticmethod
    async def safe_send(send: Awaitable[None], description: str) -> Optional[str]:
        """
        Await a send and turn any failure into a warning string.

        Returns:
            None on success, otherwise a human-readable warning.
        """
        try:
            await send
        except Exception as e:
            logger.error("Notification failed (%s): %s", description, e)
            return f"Notification not delivered: {description}"
        return None
