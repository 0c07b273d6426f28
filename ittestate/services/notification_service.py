from typing import Dict, List, Optional

import aiosmtplib
import httpx

from ..core.email_utils import send_mail
from ..core.errors import MarketplaceError
from ..core.firebase import firebase_request, is_valid_key
from ..core.logging import get_logger
from ..core.settings import Settings
from . import verification

logger = get_logger("notifications")

DISPLAY_CURRENCY = "XAF"

OUTCOME_SUBJECTS = {
  verification.VERIFIED: "Your property is now verified",
  verification.REJECTED: "Your property verification was rejected",
  verification.REJECTED_BY_GOVERNMENT: "The council rejected your property",
}


def format_currency(amount: Optional[float]) -> str:
  return f"{DISPLAY_CURRENCY} {float(amount or 0):,.0f}"


def render_outcome(prop: Dict, state: str, settings: Settings) -> str:
  name = prop.get("name") or "your property"
  lines = [f"Hello {prop.get('landlordName') or 'there'},", ""]
  if state == verification.VERIFIED:
    lines.append(f"{name} ({prop.get('city') or 'N/A'}, {format_currency(prop.get('price'))}) was approved by the council.")
    lines.append("It is now visible to tenants.")
  elif state == verification.REJECTED:
    lines.append(f"The platform team rejected the verification request for {name}.")
  else:
    lines.append(f"The council rejected the verification request for {name}.")
  lines += ["", f"Dashboard: {settings.app_url.rstrip('/')}/landlord/properties"]
  return "\n".join(lines)


async def notify_landlord(client: httpx.AsyncClient, settings: Settings, prop: Dict, state: str) -> bool:
  if state not in OUTCOME_SUBJECTS or not settings.mailer_configured:
    return False
  landlord_id = prop.get("landlordId")
  if not is_valid_key(landlord_id):
    return False
  try:
    _, account = await firebase_request(client, settings, "accounts", record_id=landlord_id)
    email = account.get("email") if isinstance(account, dict) else None
    if not email:
      return False
    await send_mail(settings, to=email, subject=OUTCOME_SUBJECTS[state], text=render_outcome(prop, state, settings))
  except (MarketplaceError, OSError, aiosmtplib.SMTPException) as exc:
    logger.warning("landlord %s not notified about %s: %s", landlord_id, prop.get("id"), exc)
    return False
  return True


def render_digest(admin_rows: List[Dict], government_rows: List[Dict], limit: int = 10) -> str:
  lines = [
    f"Awaiting admin review: {len(admin_rows)}",
    f"Awaiting council decision: {len(government_rows)}",
    "",
  ]
  for title, rows in (("Admin queue", admin_rows), ("Council queue", government_rows)):
    if not rows:
      continue
    lines.append(f"{title}:")
    for row in rows[:limit]:
      lines.append(f"- {row.get('name')} ({row.get('city') or 'N/A'}) {format_currency(row.get('price'))} [{row.get('id')}]")
    lines.append("")
  return "\n".join(lines).rstrip() + "\n"


async def emit_verification_digest(client: httpx.AsyncClient, settings: Settings) -> Dict[str, int]:
  recipients = settings.digest_recipient_list
  if not recipients:
    return {"admin": 0, "government": 0, "sent": 0}
  admin_rows = await verification.fetch_queue(client, settings, "admin")
  government_rows = await verification.fetch_queue(client, settings, "government")
  if not admin_rows and not government_rows:
    return {"admin": 0, "government": 0, "sent": 0}
  await send_mail(
    settings,
    to=recipients,
    subject=f"Verification digest: {len(admin_rows)} pending, {len(government_rows)} with the council",
    text=render_digest(admin_rows, government_rows),
  )
  return {"admin": len(admin_rows), "government": len(government_rows), "sent": len(recipients)}
