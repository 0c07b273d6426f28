from typing import Optional

from pydantic import BaseModel


class ChatOpen(BaseModel):
  landlordId: str
  propertyId: str
  # Only used when a landlord opens the thread with a known tenant.
  tenantId: Optional[str] = None


class FirstMessage(ChatOpen):
  text: str


class MessageCreate(BaseModel):
  text: str


class MessageOut(BaseModel):
  id: str
  text: str
  senderId: str
  senderName: Optional[str] = None
  senderType: str
  timestamp: int


class ChatOut(BaseModel):
  id: str
  tenantId: str
  landlordId: str
  propertyId: str
  tenantName: Optional[str] = None
  landlordName: Optional[str] = None
  propertyName: Optional[str] = None
  lastMessage: Optional[str] = None
  lastMessageTime: Optional[int] = None
  createdAt: Optional[int] = None
