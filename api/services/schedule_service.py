import logging

from ..database import db
from ..exceptions import PartialSideEffectFailure

logger = logging.getLogger(__name__)


class ScheduleService:
    """Side effects on worker schedules, which are owned by the scheduling module."""

    @staticmethod
    async def deactivate_worker_schedules(worker_id: str) -> int:
        """
        Deactivate every active schedule of a worker, so a worker on a case
        no longer shows up on active rosters.

        Returns:
            Number of schedules deactivated.

        Raises:
            PartialSideEffectFailure: If the bulk update fails.
        """
        try:
            result = await db.WorkerSchedules.update_many(
                {"worker_id": worker_id, "is_active": True},
                {"$set": {"is_active": False}}
            )
        except Exception as e:
            raise PartialSideEffectFailure("schedule_deactivation", str(e)) from e

        logger.info("Deactivated %d schedule(s) for worker %s", result.modified_count, worker_id)
        return result.modified_count
