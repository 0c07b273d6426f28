from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, Optional

import httpx
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from passlib.context import CryptContext

from .errors import AuthRequired, AuthUnavailable, PermissionDenied, StoreUnavailable, Timeout
from .firebase import firebase_request, get_client
from .settings import Settings, get_settings

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
bearer_scheme = HTTPBearer(auto_error=False)

ADMIN = "admin"
LANDLORD = "landlord"
TENANT = "tenant"
TECHNICIAN = "technician"
COUNCIL = "council"
GOVERNMENT = "government"

APPROVAL_ROLES = (COUNCIL, GOVERNMENT)


@dataclass(frozen=True)
class Identity:
  uid: str
  role: str
  name: Optional[str] = None
  email: Optional[str] = None
  anonymous: bool = False

  @property
  def display_name(self) -> str:
    return self.name or self.email or self.uid

  @property
  def is_admin(self) -> bool:
    return self.role == ADMIN

  @property
  def is_council(self) -> bool:
    return self.role in APPROVAL_ROLES


def verify_password(plain_password: str, password_hash: str) -> bool:
  return pwd_context.verify(plain_password, password_hash)


def hash_password(password: str) -> str:
  return pwd_context.hash(password)


def create_access_token(data: dict, settings: Settings) -> str:
  to_encode = data.copy()
  expire = datetime.utcnow() + timedelta(days=settings.jwt_expire_days)
  to_encode.update({"exp": expire})
  return jwt.encode(to_encode, settings.jwt_secret, algorithm="HS256")


def decode_token(token: str, settings: Settings) -> dict:
  try:
    return jwt.decode(token, settings.jwt_secret, algorithms=["HS256"])
  except JWTError as exc:
    raise AuthRequired("Invalid token.") from exc


def identity_from_account(uid: str, record: dict, claims: Optional[dict] = None) -> Identity:
  """The account record decides the role; claims only fill in missing names."""
  claims = claims or {}
  return Identity(
    uid=uid,
    role=(record.get("accountType") or TENANT).lower(),
    name=record.get("username") or record.get("name") or claims.get("name"),
    email=record.get("email") or claims.get("email"),
    anonymous=bool(record.get("anonymous", claims.get("anonymous", False))),
  )


async def load_identity(client: httpx.AsyncClient, settings: Settings, claims: dict) -> Identity:
  uid = claims.get("sub")
  if not uid:
    raise AuthRequired("Invalid token.")
  try:
    _, account = await firebase_request(client, settings, "accounts", record_id=uid)
  except (StoreUnavailable, Timeout) as exc:
    raise AuthUnavailable() from exc
  if not isinstance(account, dict):
    raise AuthRequired("Account no longer exists.")
  return identity_from_account(uid, account, claims)


async def resolve_caller(
  request: Request,
  credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
  settings: Settings = Depends(get_settings),
) -> Identity:
  if not credentials or credentials.scheme.lower() != "bearer":
    raise AuthRequired("Missing token.")
  claims = decode_token(credentials.credentials, settings)
  return await load_identity(get_client(request), settings, claims)


def require_roles(identity: Identity, roles: Iterable[str], action: str = "perform this action") -> None:
  if identity.role not in set(roles):
    raise PermissionDenied(f"Role '{identity.role}' may not {action}.")
