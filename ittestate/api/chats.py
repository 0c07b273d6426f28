from fastapi import APIRouter, Depends, Request, status

from ..core.errors import PermissionDenied, ValidationFailed
from ..core.firebase import get_client
from ..core.security import ADMIN, LANDLORD, TENANT, Identity, resolve_caller
from ..core.settings import Settings, get_settings
from ..models.chat import ChatOpen, ChatOut, FirstMessage, MessageCreate, MessageOut
from ..services import chat_service
from .streaming import sse_response

router = APIRouter(prefix="/api/chats", tags=["chats"])


def chat_parties(payload: ChatOpen, identity: Identity) -> tuple:
  """Work out (tenant_id, landlord_id) for the caller opening a thread."""
  if identity.role in (LANDLORD, ADMIN):
    if not payload.tenantId:
      raise ValidationFailed("tenantId is required when a landlord opens a chat.")
    if payload.landlordId != chat_service.participant_id(identity):
      raise PermissionDenied("Landlords may only open chats on their own listings.")
    return payload.tenantId, payload.landlordId
  return identity.uid, payload.landlordId


def list_role(identity: Identity) -> str:
  return LANDLORD if identity.role in (LANDLORD, ADMIN) else TENANT


async def open_chat(request: Request, settings: Settings, payload: ChatOpen, identity: Identity) -> tuple:
  tenant_id, landlord_id = chat_parties(payload, identity)
  tenant_name = identity.name if tenant_id == identity.uid else None
  return await chat_service.open_or_create_chat(
    get_client(request), settings, tenant_id, landlord_id, payload.propertyId, tenant_name
  )


@router.post("", response_model=dict)
async def open_or_create_chat(
  payload: ChatOpen,
  request: Request,
  identity: Identity = Depends(resolve_caller),
  settings: Settings = Depends(get_settings),
):
  chat, created = await open_chat(request, settings, payload, identity)
  return {"chat": ChatOut.model_validate(chat).model_dump(), "created": created}


@router.post("/messages", response_model=dict, status_code=status.HTTP_201_CREATED)
async def send_first_message(
  payload: FirstMessage,
  request: Request,
  identity: Identity = Depends(resolve_caller),
  settings: Settings = Depends(get_settings),
):
  chat, created = await open_chat(request, settings, payload, identity)
  message = await chat_service.send_message(get_client(request), settings, chat["id"], identity, payload.text)
  return {
    "chat": ChatOut.model_validate(chat).model_dump(),
    "created": created,
    "message": MessageOut.model_validate(message).model_dump(),
  }


@router.get("", response_model=list[ChatOut])
async def list_chats(
  request: Request,
  identity: Identity = Depends(resolve_caller),
  settings: Settings = Depends(get_settings),
):
  return await chat_service.list_chats_for_user(
    get_client(request), settings, chat_service.participant_id(identity), list_role(identity)
  )


@router.get("/stream")
async def stream_chats(
  request: Request,
  identity: Identity = Depends(resolve_caller),
  settings: Settings = Depends(get_settings),
):
  return sse_response(
    chat_service.subscribe_chats_for_user(
      get_client(request), settings, chat_service.participant_id(identity), list_role(identity)
    )
  )


@router.get("/{chat_id}", response_model=ChatOut)
async def get_chat(
  chat_id: str,
  request: Request,
  identity: Identity = Depends(resolve_caller),
  settings: Settings = Depends(get_settings),
):
  chat = await chat_service.get_chat(get_client(request), settings, chat_id)
  chat_service.ensure_can_read(chat, identity)
  return chat


@router.get("/{chat_id}/messages", response_model=list[MessageOut])
async def list_messages(
  chat_id: str,
  request: Request,
  identity: Identity = Depends(resolve_caller),
  settings: Settings = Depends(get_settings),
):
  client = get_client(request)
  chat = await chat_service.get_chat(client, settings, chat_id)
  chat_service.ensure_can_read(chat, identity)
  return await chat_service.list_messages(client, settings, chat_id)


@router.get("/{chat_id}/messages/stream")
async def stream_messages(
  chat_id: str,
  request: Request,
  identity: Identity = Depends(resolve_caller),
  settings: Settings = Depends(get_settings),
):
  client = get_client(request)
  chat = await chat_service.get_chat(client, settings, chat_id)
  chat_service.ensure_can_read(chat, identity)
  return sse_response(chat_service.subscribe_messages(client, settings, chat_id))


@router.post("/{chat_id}/messages", response_model=MessageOut, status_code=status.HTTP_201_CREATED)
async def send_message(
  chat_id: str,
  payload: MessageCreate,
  request: Request,
  identity: Identity = Depends(resolve_caller),
  settings: Settings = Depends(get_settings),
):
  return await chat_service.send_message(get_client(request), settings, chat_id, identity, payload.text)
