from typing import Literal

from fastapi import APIRouter, BackgroundTasks, Depends, Request

from ..core.errors import NotFound
from ..core.firebase import get_client
from ..core.security import ADMIN, APPROVAL_ROLES, Identity, require_roles, resolve_caller
from ..core.settings import Settings, get_settings
from ..models.property import PropertyOut
from ..services import property_store, verification
from ..services.notification_service import notify_landlord
from .streaming import sse_response

router = APIRouter(prefix="/api/verification", tags=["verification"])

Action = Literal["submit", "reject", "forward", "approve", "withdraw"]

GOVERNMENT_READERS = (ADMIN,) + APPROVAL_ROLES


@router.get("/queue", response_model=list[PropertyOut])
async def admin_queue(
  request: Request,
  identity: Identity = Depends(resolve_caller),
  settings: Settings = Depends(get_settings),
):
  require_roles(identity, (ADMIN,), "read the verification queue")
  return await verification.fetch_queue(get_client(request), settings, ADMIN)


@router.get("/queue/stream")
async def stream_admin_queue(
  request: Request,
  identity: Identity = Depends(resolve_caller),
  settings: Settings = Depends(get_settings),
):
  require_roles(identity, (ADMIN,), "read the verification queue")
  return sse_response(verification.subscribe_queue(get_client(request), settings, ADMIN))


@router.get("/government", response_model=list[PropertyOut])
async def government_queue(
  request: Request,
  identity: Identity = Depends(resolve_caller),
  settings: Settings = Depends(get_settings),
):
  require_roles(identity, GOVERNMENT_READERS, "read the council queue")
  return await verification.fetch_queue(get_client(request), settings, "government")


@router.get("/government/stream")
async def stream_government_queue(
  request: Request,
  identity: Identity = Depends(resolve_caller),
  settings: Settings = Depends(get_settings),
):
  require_roles(identity, GOVERNMENT_READERS, "read the council queue")
  return sse_response(verification.subscribe_queue(get_client(request), settings, "government"))


@router.get("/{property_id}", response_model=dict)
async def verification_state(
  property_id: str,
  request: Request,
  identity: Identity = Depends(resolve_caller),
  settings: Settings = Depends(get_settings),
):
  prop = await property_store.get_property(get_client(request), settings, property_id)
  if not property_store.is_tenant_visible(prop) and not property_store.can_modify(identity, prop):
    raise NotFound("Property not found.")
  return verification.describe(prop, identity)


@router.post("/{property_id}/{action}", response_model=dict)
async def apply_action(
  property_id: str,
  action: Action,
  request: Request,
  background_tasks: BackgroundTasks,
  identity: Identity = Depends(resolve_caller),
  settings: Settings = Depends(get_settings),
):
  client = get_client(request)
  prop, transition = await verification.apply_action(client, settings, property_id, action, identity)
  if transition.target in verification.TERMINAL_STATES:
    background_tasks.add_task(notify_landlord, client, settings, prop, transition.target)
  return {
    "property": PropertyOut.model_validate(prop).model_dump(),
    **verification.describe(prop, identity),
  }
