from typing import Literal, Optional

from fastapi import APIRouter, Depends, Request, status

from ..core.errors import NotFound, PermissionDenied, ValidationFailed
from ..core.firebase import get_client
from ..core.security import ADMIN, LANDLORD, Identity, require_roles, resolve_caller
from ..core.settings import Settings, get_settings
from ..models.property import PropertyCreate, PropertyOut, PropertyUpdate
from ..services import ledger, mock_gateway, property_store, verification
from .streaming import sse_response

router = APIRouter(prefix="/api/properties", tags=["properties"])

Scope = Literal["verified", "mine", "all"]


def default_scope(identity: Identity) -> str:
  if identity.is_admin or identity.is_council:
    return "all"
  if identity.role == LANDLORD:
    return "mine"
  return "verified"


def scope_predicate(scope: Optional[str], identity: Identity, q: Optional[str] = None):
  scope = scope or default_scope(identity)
  search = property_store.matches_search(q)
  if scope == "all":
    if not (identity.is_admin or identity.is_council):
      raise PermissionDenied("Only administrators and the council may list every property.")
    return search
  if scope == "mine":
    owner = property_store.owned_by(ADMIN if identity.is_admin else identity.uid)
    return lambda prop: owner(prop) and search(prop)
  return lambda prop: property_store.is_tenant_visible(prop) and search(prop)


@router.get("", response_model=list[PropertyOut])
async def list_properties(
  request: Request,
  scope: Optional[Scope] = None,
  q: Optional[str] = None,
  identity: Identity = Depends(resolve_caller),
  settings: Settings = Depends(get_settings),
):
  predicate = scope_predicate(scope, identity, q)
  return await property_store.list_properties(get_client(request), settings, predicate)


@router.get("/stream")
async def stream_properties(
  request: Request,
  scope: Optional[Scope] = None,
  q: Optional[str] = None,
  identity: Identity = Depends(resolve_caller),
  settings: Settings = Depends(get_settings),
):
  predicate = scope_predicate(scope, identity, q)
  return sse_response(property_store.subscribe_properties(get_client(request), settings, predicate))


@router.get("/{property_id}", response_model=PropertyOut)
async def get_property(
  property_id: str,
  request: Request,
  identity: Identity = Depends(resolve_caller),
  settings: Settings = Depends(get_settings),
):
  prop = await property_store.get_property(get_client(request), settings, property_id)
  # Unverified listings stay hidden from everyone but their reviewers and owner.
  if not property_store.is_tenant_visible(prop) and not property_store.can_modify(identity, prop):
    raise NotFound("Property not found.")
  return prop


@router.post("", response_model=PropertyOut, status_code=status.HTTP_201_CREATED)
async def create_property(
  request: Request,
  payload: PropertyCreate,
  identity: Identity = Depends(resolve_caller),
  settings: Settings = Depends(get_settings),
):
  require_roles(identity, (LANDLORD, ADMIN), "create properties")
  client = get_client(request)
  record = property_store.build_property_record(payload, identity)
  property_id = await property_store.new_property_id(client, settings, payload.id)

  receipt = None
  if not identity.is_admin:
    if payload.payment is None:
      raise ValidationFailed("A platform fee payment is required to list a property.")
    receipt = await mock_gateway.charge(
      settings, payload.payment, settings.platform_fee_amount, f"platform fee for {record['name']}"
    )
  fee, entry = ledger.build_platform_fee(property_id, record, receipt)
  record["platformFee"] = fee

  if payload.submitForVerification:
    _, patch = verification.plan_transition(
      property_store.map_property(property_id, record), verification.SUBMIT, identity
    )
    record.update(patch)

  prop = await property_store.write_property(client, settings, property_id, record)
  await ledger.record_platform_fee(client, settings, entry)
  return prop


@router.patch("/{property_id}", response_model=PropertyOut)
async def update_property(
  property_id: str,
  payload: PropertyUpdate,
  request: Request,
  identity: Identity = Depends(resolve_caller),
  settings: Settings = Depends(get_settings),
):
  patch = payload.model_dump(exclude_unset=True, exclude_none=True)
  if not patch:
    raise ValidationFailed("Nothing to update.")
  return await property_store.update_property(get_client(request), settings, property_id, patch, identity)


@router.delete("/{property_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_property(
  property_id: str,
  request: Request,
  identity: Identity = Depends(resolve_caller),
  settings: Settings = Depends(get_settings),
):
  await property_store.delete_property(get_client(request), settings, property_id, identity)
