from typing import Optional

import httpx
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from ..core.logging import get_logger
from ..core.settings import Settings
from ..services.notification_service import emit_verification_digest

logger = get_logger("scheduler")


def create_scheduler(settings: Settings, http_client: httpx.AsyncClient) -> Optional[AsyncIOScheduler]:
  if not settings.digest_active:
    return None
  scheduler = AsyncIOScheduler(timezone=settings.digest_cron_tz)

  async def digest_job():
    try:
      result = await emit_verification_digest(http_client, settings)
      logger.info(
        "verification digest: %s admin, %s council, sent to %s", result["admin"], result["government"], result["sent"]
      )
    except Exception:  # pragma: no cover - logged only
      logger.exception("verification digest failed")

  # Weekdays at 8:00, before the review desks open.
  scheduler.add_job(digest_job, CronTrigger(day_of_week="mon-fri", hour=8, minute=0))

  return scheduler
