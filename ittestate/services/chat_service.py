from typing import Any, AsyncIterator, List, Optional, Tuple

import httpx

from ..core.errors import MarketplaceError, NotFound, PermissionDenied, ValidationFailed
from ..core.firebase import firebase_request, firebase_stream, is_valid_key
from ..core.logging import get_logger
from ..core.security import ADMIN, LANDLORD, TENANT, Identity
from ..core.settings import Settings
from . import property_store
from .records import now_ms, snapshot_items, to_clean_string

logger = get_logger("chats")

RESOURCE = "chats"
MAX_MESSAGE_LENGTH = 4000


def chat_id_for(tenant_id: str, landlord_id: str, property_id: str) -> str:
  return f"chat_{tenant_id}_{landlord_id}_{property_id}"


def messages_resource(chat_id: str) -> str:
  return f"{RESOURCE}/{chat_id}/messages"


def map_chat(chat_id: str, record: Optional[dict]) -> dict:
  data = record or {}
  return {
    "id": chat_id,
    "tenantId": data.get("tenantId"),
    "landlordId": data.get("landlordId"),
    "propertyId": data.get("propertyId"),
    "tenantName": data.get("tenantName"),
    "landlordName": data.get("landlordName"),
    "propertyName": data.get("propertyName"),
    "lastMessage": data.get("lastMessage"),
    "lastMessageTime": data.get("lastMessageTime"),
    "createdAt": data.get("createdAt"),
  }


def map_messages(snapshot: Any) -> List[dict]:
  messages = [
    {
      "id": msg_id,
      "text": record.get("text") or "",
      "senderId": record.get("senderId"),
      "senderName": record.get("senderName"),
      "senderType": record.get("senderType") or TENANT,
      "timestamp": int(record.get("timestamp") or 0),
    }
    for msg_id, record in snapshot_items(snapshot)
  ]
  # Push ids sort chronologically, so they break timestamp ties.
  return sorted(messages, key=lambda m: (m["timestamp"], m["id"]))


def participant_id(identity: Identity) -> str:
  # Admin-created listings are owned by the shared "admin" landlord id.
  return ADMIN if identity.is_admin else identity.uid


def participant_role(chat: dict, uid: str) -> Optional[str]:
  if chat.get("tenantId") == uid:
    return TENANT
  if chat.get("landlordId") == uid:
    return LANDLORD
  return None


def ensure_can_read(chat: dict, identity: Identity) -> None:
  if identity.is_admin or participant_role(chat, identity.uid):
    return
  raise PermissionDenied("Only chat participants may read this conversation.")


async def _account_name(client: httpx.AsyncClient, settings: Settings, uid: str) -> Optional[str]:
  if not is_valid_key(uid):
    return None
  _, account = await firebase_request(client, settings, "accounts", record_id=uid)
  if not isinstance(account, dict):
    return None
  return account.get("username") or account.get("name") or account.get("email")


async def find_chat(client: httpx.AsyncClient, settings: Settings, chat_id: str) -> Optional[dict]:
  if not is_valid_key(chat_id):
    return None
  _, record = await firebase_request(client, settings, RESOURCE, record_id=chat_id)
  if not isinstance(record, dict):
    return None
  return map_chat(chat_id, record)


async def get_chat(client: httpx.AsyncClient, settings: Settings, chat_id: str) -> dict:
  chat = await find_chat(client, settings, chat_id)
  if chat is None:
    raise NotFound("Chat not found.")
  return chat


async def open_or_create_chat(
  client: httpx.AsyncClient,
  settings: Settings,
  tenant_id: str,
  landlord_id: str,
  property_id: str,
  tenant_name: Optional[str] = None,
) -> Tuple[dict, bool]:
  """Return the chat for the triple and whether this call created it."""
  if not all(is_valid_key(part) for part in (tenant_id, landlord_id, property_id)):
    raise ValidationFailed("Tenant, landlord and property ids are required.")
  if tenant_id == landlord_id:
    raise ValidationFailed("A landlord cannot open a chat with themselves.")
  chat_id = chat_id_for(tenant_id, landlord_id, property_id)
  existing = await find_chat(client, settings, chat_id)
  if existing is not None:
    return existing, False

  prop = await property_store.get_property(client, settings, property_id)
  if prop.get("landlordId") != landlord_id:
    raise ValidationFailed("This landlord does not own the property.")
  record = {
    "id": chat_id,
    "tenantId": tenant_id,
    "landlordId": landlord_id,
    "propertyId": property_id,
    "tenantName": tenant_name or await _account_name(client, settings, tenant_id),
    "landlordName": prop.get("landlordName") or await _account_name(client, settings, landlord_id),
    "propertyName": prop.get("name"),
    "createdAt": now_ms(),
  }
  record = {key: value for key, value in record.items() if value is not None}
  await firebase_request(client, settings, RESOURCE, method="PUT", record_id=chat_id, body=record)
  logger.info("chat %s created", chat_id)
  return map_chat(chat_id, record), True


async def send_message(
  client: httpx.AsyncClient,
  settings: Settings,
  chat_id: str,
  identity: Identity,
  text: str,
) -> dict:
  body_text = to_clean_string(text)
  if not body_text:
    raise ValidationFailed("Message cannot be empty.")
  if len(body_text) > MAX_MESSAGE_LENGTH:
    raise ValidationFailed(f"Message cannot exceed {MAX_MESSAGE_LENGTH} characters.")
  chat = await get_chat(client, settings, chat_id)
  sender_id = participant_id(identity)
  sender_type = participant_role(chat, sender_id)
  if sender_type is None:
    raise PermissionDenied("Only chat participants may send messages.")

  message = {
    "text": body_text,
    "senderId": sender_id,
    "senderName": identity.display_name,
    "senderType": sender_type,
    "timestamp": now_ms(),
  }
  _, snapshot = await firebase_request(client, settings, messages_resource(chat_id), method="POST", body=message)
  message_id = snapshot.get("name") if isinstance(snapshot, dict) else None

  summary = {"lastMessage": body_text, "lastMessageTime": message["timestamp"]}
  try:
    await firebase_request(client, settings, RESOURCE, method="PATCH", record_id=chat_id, body=summary)
  except MarketplaceError as exc:
    # The message is stored; the chat list catches up on the next send.
    logger.warning("chat %s summary not updated: %s", chat_id, exc.detail)
  return {"id": message_id, **message}


async def list_messages(client: httpx.AsyncClient, settings: Settings, chat_id: str) -> List[dict]:
  _, snapshot = await firebase_request(client, settings, messages_resource(chat_id))
  return map_messages(snapshot)


async def subscribe_messages(client: httpx.AsyncClient, settings: Settings, chat_id: str) -> AsyncIterator[List[dict]]:
  async for snapshot in firebase_stream(client, settings, messages_resource(chat_id)):
    yield map_messages(snapshot)


def chats_for_user(snapshot: Any, uid: str, role: str) -> List[dict]:
  field = "tenantId" if role == TENANT else "landlordId"
  chats = [map_chat(chat_id, record) for chat_id, record in snapshot_items(snapshot) if record.get(field) == uid]
  return sorted(chats, key=lambda c: c.get("lastMessageTime") or c.get("createdAt") or 0, reverse=True)


def resolve_names(chats: List[dict], accounts: Any, properties: Any) -> List[dict]:
  """Refresh display names from the current account and property records.

  The names cached on the chat are kept when the referenced record is gone.
  """
  accounts = accounts if isinstance(accounts, dict) else {}
  properties = properties if isinstance(properties, dict) else {}
  resolved = []
  for chat in chats:
    tenant = accounts.get(chat.get("tenantId")) or {}
    landlord = accounts.get(chat.get("landlordId")) or {}
    prop = properties.get(chat.get("propertyId")) or {}
    resolved.append(
      {
        **chat,
        "tenantName": tenant.get("username") or tenant.get("email") or chat.get("tenantName"),
        "landlordName": landlord.get("username") or prop.get("landlordName") or chat.get("landlordName"),
        "propertyName": prop.get("name") or chat.get("propertyName"),
      }
    )
  return resolved


async def _named_chats_for_user(client: httpx.AsyncClient, settings: Settings, snapshot: Any, uid: str, role: str) -> List[dict]:
  chats = chats_for_user(snapshot, uid, role)
  if not chats:
    return []
  _, accounts = await firebase_request(client, settings, "accounts")
  _, properties = await firebase_request(client, settings, property_store.RESOURCE)
  return resolve_names(chats, accounts, properties)


async def list_chats_for_user(client: httpx.AsyncClient, settings: Settings, uid: str, role: str) -> List[dict]:
  _, snapshot = await firebase_request(client, settings, RESOURCE)
  return await _named_chats_for_user(client, settings, snapshot, uid, role)


async def subscribe_chats_for_user(
  client: httpx.AsyncClient,
  settings: Settings,
  uid: str,
  role: str,
) -> AsyncIterator[List[dict]]:
  # Names are resolved per emission.
  async for snapshot in firebase_stream(client, settings, RESOURCE):
    yield await _named_chats_for_user(client, settings, snapshot, uid, role)
