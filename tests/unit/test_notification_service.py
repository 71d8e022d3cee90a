"""
Unit tests for NotificationService.

Sends go to the in-memory Notifications collection from ``fake_db``.
"""
from unittest.mock import AsyncMock, patch

import pytest

from api.models.notifications import NotificationType
from api.services.notification_service import NotificationService


class TestApprovalWorkflowNotifications:

    @pytest.mark.asyncio
    async def test_pending_incident_goes_to_team_leader(self, fake_db):
        await NotificationService().notify_team_leader_pending_incident(
            team_leader_id="leader_001",
            incident_id="inc_001",
            worker_id="worker_001",
            worker_name="Ana Garcia",
            worker_email="ana@example.com",
            incident_type="near_miss",
            severity="high",
            location="Loading dock",
        )

        [notification] = fake_db.Notifications.documents
        assert notification["user_id"] == "leader_001"
        assert notification["type"] == NotificationType.INCIDENT_APPROVAL_NEEDED.value
        assert notification["is_read"] is False
        assert "a near-miss with HIGH severity at Loading dock" in notification["message"]
        assert notification["data"]["incident_id"] == "inc_001"

    @pytest.mark.asyncio
    async def test_worker_confirmation(self, fake_db):
        await NotificationService().notify_worker_report_submitted("worker_001", "inc_001", "property_damage")

        [notification] = fake_db.Notifications.documents
        assert notification["type"] == NotificationType.SYSTEM.value
        assert "property damage report" in notification["message"]
        assert notification["data"]["approval_status"] == "pending_approval"

    @pytest.mark.asyncio
    async def test_approval_notifies_worker_and_supervisor(self, fake_db):
        await NotificationService().notify_incident_approved(
            worker_id="worker_001",
            supervisor_id="super_001",
            incident_id="inc_001",
            case_id="case_001",
            worker_name="Ana Garcia",
            approver_name="Tom Leader",
        )

        recipients = {n["user_id"]: n for n in fake_db.Notifications.documents}
        assert set(recipients) == {"worker_001", "super_001"}
        assert recipients["worker_001"]["type"] == NotificationType.INCIDENT_APPROVED.value
        assert recipients["super_001"]["data"]["case_id"] == "case_001"

    @pytest.mark.asyncio
    async def test_approval_without_supervisor(self, fake_db):
        await NotificationService().notify_incident_approved(
            worker_id="worker_001",
            supervisor_id=None,
            incident_id="inc_001",
            case_id="case_001",
            worker_name="Ana Garcia",
            approver_name="Tom Leader",
        )
        assert [n["user_id"] for n in fake_db.Notifications.documents] == ["worker_001"]

    @pytest.mark.asyncio
    async def test_rejection_carries_reason(self, fake_db):
        await NotificationService().notify_incident_rejected("worker_001", "inc_001", "Duplicate report", "Tom Leader")

        [notification] = fake_db.Notifications.documents
        assert notification["type"] == NotificationType.INCIDENT_REJECTED.value
        assert "Reason: Duplicate report" in notification["message"]


class TestSafeSend:

    @pytest.mark.asyncio
    async def test_success_returns_none(self, fake_db):
        send = NotificationService().notify_worker_report_submitted("worker_001", "inc_001", "incident")
        assert await NotificationService.safe_send(send, "worker confirmation") is None
        assert len(fake_db.Notifications.documents) == 1

    @pytest.mark.asyncio
    async def test_failure_becomes_warning(self, fake_db):
        fake_db.Notifications.fail_on.add("insert_one")
        send = NotificationService().notify_worker_report_submitted("worker_001", "inc_001", "incident")

        warning = await NotificationService.safe_send(send, "worker confirmation")

        assert warning == "Notification not delivered: worker confirmation"
        assert fake_db.Notifications.documents == []

    @pytest.mark.asyncio
    async def test_approval_failure_is_reported_once(self):
        service = NotificationService()
        with patch.object(NotificationService, "_insert", AsyncMock(side_effect=RuntimeError("mongo down"))) as insert:
            warning = await NotificationService.safe_send(
                service.notify_incident_approved(
                    worker_id="worker_001",
                    supervisor_id="super_001",
                    incident_id="inc_001",
                    case_id="case_001",
                    worker_name="Ana Garcia",
                    approver_name="Tom Leader",
                ),
                "approval of incident inc_001",
            )

        insert.assert_awaited_once()
        assert warning == "Notification not delivered: approval of incident inc_001"
