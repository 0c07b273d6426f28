from typing import Literal, Optional

from pydantic import BaseModel, EmailStr

AccountType = Literal["admin", "landlord", "tenant", "technician", "council", "government"]
SelfServiceType = Literal["landlord", "tenant", "technician"]


class AnonymousSignIn(BaseModel):
  accountType: SelfServiceType = "tenant"
  username: Optional[str] = None


class UserCreate(BaseModel):
  username: str
  email: EmailStr
  password: str
  accountType: SelfServiceType = "tenant"


class UserLogin(BaseModel):
  email: EmailStr
  password: str


class AccountOut(BaseModel):
  id: str
  username: Optional[str] = None
  email: Optional[str] = None
  accountType: str = "tenant"
  anonymous: bool = False
  createdAt: Optional[int] = None


class AccountUpdate(BaseModel):
  username: Optional[str] = None
  email: Optional[EmailStr] = None
  accountType: Optional[AccountType] = None


def map_account(account_id: str, record: Optional[dict]) -> dict:
  data = record or {}
  return {
    "id": account_id,
    "username": data.get("username") or data.get("name"),
    "email": data.get("email"),
    "accountType": data.get("accountType") or "tenant",
    "anonymous": bool(data.get("anonymous")),
    "createdAt": data.get("createdAt"),
  }
