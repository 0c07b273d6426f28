from typing import Dict, Optional, Tuple
from uuid import uuid4

import httpx

from ..core.errors import AuthUnavailable, MarketplaceError
from ..core.firebase import firebase_request
from ..core.logging import get_logger
from ..core.security import ADMIN, hash_password
from ..core.settings import Settings
from ..models.user import map_account
from .records import now_ms, snapshot_items

logger = get_logger("identity")

ACCOUNTS = "accounts"
SIGN_UP_URL = "https://identitytoolkit.googleapis.com/v1/accounts:signUp"


async def provision_anonymous_uid(client: httpx.AsyncClient, settings: Settings) -> str:
  """Ask the hosted identity service for a new anonymous user id.

  Without an API key the service mints the id itself.
  """
  if not settings.firebase_api_key:
    return uuid4().hex
  try:
    response = await client.post(
      SIGN_UP_URL,
      params={"key": settings.firebase_api_key},
      json={"returnSecureToken": True},
      timeout=settings.firebase_timeout_seconds,
    )
  except httpx.HTTPError as exc:
    logger.warning("anonymous sign-up failed: %s", exc)
    raise AuthUnavailable() from exc
  if response.status_code >= 400:
    logger.warning("anonymous sign-up refused: %s %s", response.status_code, response.text)
    raise AuthUnavailable(f"Identity service error {response.status_code}.")
  local_id = (response.json() or {}).get("localId")
  if not local_id:
    raise AuthUnavailable("Identity service returned no user id.")
  return local_id


async def fetch_accounts(client: httpx.AsyncClient, settings: Settings) -> Dict[str, dict]:
  _, snapshot = await firebase_request(client, settings, ACCOUNTS)
  return dict(snapshot_items(snapshot))


async def find_account_by_email(client: httpx.AsyncClient, settings: Settings, email: str) -> Optional[Tuple[str, dict]]:
  wanted = email.strip().lower()
  accounts = await fetch_accounts(client, settings)
  for account_id, record in accounts.items():
    if (record.get("email") or "").lower() == wanted:
      return account_id, record
  return None


async def write_account(client: httpx.AsyncClient, settings: Settings, account_id: str, record: dict) -> dict:
  await firebase_request(client, settings, ACCOUNTS, method="PUT", record_id=account_id, body=record)
  return map_account(account_id, record)


async def add_default_admin(client: httpx.AsyncClient, settings: Settings) -> None:
  try:
    if await find_account_by_email(client, settings, settings.default_admin_email):
      return
    await write_account(
      client,
      settings,
      uuid4().hex,
      {
        "username": "Admin",
        "email": settings.default_admin_email.lower(),
        "passwordHash": hash_password(settings.default_admin_password),
        "accountType": ADMIN,
        "createdAt": now_ms(),
      },
    )
    logger.info("default admin %s provisioned", settings.default_admin_email)
  except MarketplaceError as exc:
    logger.warning("default admin not provisioned: %s", exc.detail)
