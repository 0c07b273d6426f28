from typing import Optional

from fastapi import APIRouter, Depends, Request, status

from ..core.errors import NotFound, ValidationFailed
from ..core.firebase import firebase_request, get_client, is_valid_key
from ..core.security import ADMIN, Identity, require_roles, resolve_caller
from ..core.settings import Settings, get_settings
from ..models.user import AccountOut, AccountUpdate, map_account
from ..services.identity_service import ACCOUNTS, fetch_accounts, find_account_by_email

router = APIRouter(prefix="/api/accounts", tags=["accounts"])


async def load_account(request: Request, settings: Settings, account_id: str) -> dict:
  if not is_valid_key(account_id):
    raise NotFound("Account not found.")
  _, record = await firebase_request(get_client(request), settings, ACCOUNTS, record_id=account_id)
  if not isinstance(record, dict):
    raise NotFound("Account not found.")
  return record


@router.get("", response_model=list[AccountOut])
async def list_accounts(
  request: Request,
  q: Optional[str] = None,
  identity: Identity = Depends(resolve_caller),
  settings: Settings = Depends(get_settings),
):
  require_roles(identity, (ADMIN,), "list accounts")
  accounts = [map_account(account_id, record) for account_id, record in (await fetch_accounts(get_client(request), settings)).items()]
  needle = (q or "").strip().lower()
  if needle:
    accounts = [
      a for a in accounts
      if needle in (a["username"] or a["id"]).lower()
      or needle in (a["email"] or "").lower()
      or needle in (a["accountType"] or "").lower()
    ]
  return accounts


@router.patch("/{account_id}", response_model=AccountOut)
async def update_account(
  account_id: str,
  payload: AccountUpdate,
  request: Request,
  identity: Identity = Depends(resolve_caller),
  settings: Settings = Depends(get_settings),
):
  require_roles(identity, (ADMIN,), "update accounts")
  existing = await load_account(request, settings, account_id)
  patch = payload.model_dump(exclude_unset=True, exclude_none=True)
  if not patch:
    raise ValidationFailed("Nothing to update.")
  if "email" in patch:
    patch["email"] = patch["email"].lower()
    clash = await find_account_by_email(get_client(request), settings, patch["email"])
    if clash and clash[0] != account_id:
      raise ValidationFailed("Another account already uses this email.")
  await firebase_request(get_client(request), settings, ACCOUNTS, method="PATCH", record_id=account_id, body=patch)
  return map_account(account_id, {**existing, **patch})


@router.delete("/{account_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_account(
  account_id: str,
  request: Request,
  identity: Identity = Depends(resolve_caller),
  settings: Settings = Depends(get_settings),
):
  require_roles(identity, (ADMIN,), "delete accounts")
  await load_account(request, settings, account_id)
  await firebase_request(get_client(request), settings, ACCOUNTS, method="DELETE", record_id=account_id)
