from uuid import uuid4

from fastapi import APIRouter, Depends, HTTPException, Request, status

from ..core.firebase import get_client
from ..core.security import Identity, create_access_token, hash_password, resolve_caller, verify_password
from ..core.settings import Settings, get_settings
from ..models.user import AnonymousSignIn, UserCreate, UserLogin, map_account
from ..services.identity_service import (
  find_account_by_email,
  provision_anonymous_uid,
  write_account,
)
from ..services.records import now_ms, to_clean_string

router = APIRouter(prefix="/api/auth", tags=["auth"])


def issue_token(account: dict, settings: Settings) -> str:
  return create_access_token(
    {
      "sub": account["id"],
      "email": account.get("email"),
      "role": account.get("accountType"),
      "anonymous": account.get("anonymous", False),
    },
    settings,
  )


@router.post("/anonymous", response_model=dict, status_code=status.HTTP_201_CREATED)
async def anonymous_sign_in(
  request: Request,
  payload: AnonymousSignIn | None = None,
  settings: Settings = Depends(get_settings),
):
  payload = payload or AnonymousSignIn()
  client = get_client(request)
  uid = await provision_anonymous_uid(client, settings)
  record = {
    "username": to_clean_string(payload.username),
    "accountType": payload.accountType,
    "anonymous": True,
    "createdAt": now_ms(),
  }
  account = await write_account(client, settings, uid, {k: v for k, v in record.items() if v is not None})
  return {"token": issue_token(account, settings), "user": account}


@router.post("/register", response_model=dict, status_code=status.HTTP_201_CREATED)
async def register(request: Request, payload: UserCreate, settings: Settings = Depends(get_settings)):
  client = get_client(request)
  if len(payload.password) < 8:
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Password must be at least 8 characters.")
  username = to_clean_string(payload.username)
  if not username:
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Username is required.")
  if await find_account_by_email(client, settings, payload.email):
    raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="An account already exists with this email.")
  account = await write_account(
    client,
    settings,
    uuid4().hex,
    {
      "username": username,
      "email": payload.email.lower(),
      "passwordHash": hash_password(payload.password),
      "accountType": payload.accountType,
      "createdAt": now_ms(),
    },
  )
  return {"token": issue_token(account, settings), "user": account}


@router.post("/login", response_model=dict)
async def login(request: Request, payload: UserLogin, settings: Settings = Depends(get_settings)):
  match = await find_account_by_email(get_client(request), settings, payload.email)
  if not match or not match[1].get("passwordHash"):
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials.")
  account_id, record = match
  if not verify_password(payload.password, record["passwordHash"]):
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials.")
  account = map_account(account_id, record)
  return {"token": issue_token(account, settings), "user": account}


@router.get("/me", response_model=dict)
async def me(identity: Identity = Depends(resolve_caller)):
  return {
    "user": {
      "id": identity.uid,
      "username": identity.name,
      "email": identity.email,
      "accountType": identity.role,
      "anonymous": identity.anonymous,
    }
  }
