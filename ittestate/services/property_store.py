from typing import Any, AsyncIterator, Callable, Dict, List, Optional

import httpx

from ..core.errors import NotFound, PermissionDenied, ValidationFailed
from ..core.firebase import firebase_request, firebase_stream, is_valid_key
from ..core.logging import get_logger
from ..core.security import ADMIN, Identity
from ..core.settings import Settings
from ..models.property import PropertyCreate
from .records import generate_id, next_stamp, now_ms, snapshot_items, to_clean_string

logger = get_logger("properties")

RESOURCE = "properties"

Predicate = Callable[[Dict[str, Any]], bool]

WORKFLOW_FIELDS = {
  "isVerified",
  "verificationRequested",
  "verificationRequestedAt",
  "verificationStatus",
  "verifiedAt",
  "verifiedBy",
  "forwardedAt",
  "forwardedBy",
  "withdrawnAt",
  "governmentRequested",
  "governmentRequestedAt",
  "governmentApproved",
  "governmentApprovedAt",
  "governmentRejected",
  "governmentRejectedAt",
}
PROTECTED_FIELDS = WORKFLOW_FIELDS | {"id", "landlordId", "createdAt", "platformFee"}


def map_property(prop_id: str, record: Optional[dict]) -> dict:
  data = dict(record or {})
  city = data.get("city") or data.get("location")
  listing_type = data.get("listingType") or data.get("type")
  return {
    **data,
    "id": prop_id,
    "city": city,
    "location": data.get("location") or city,
    "listingType": listing_type,
    "status": data.get("status") or "listed",
    "bedrooms": data.get("bedrooms") or 0,
    "bathrooms": data.get("bathrooms") or 0,
    "area": data.get("area") or 0,
    "isVerified": data.get("isVerified") is True,
    "verificationRequested": bool(data.get("verificationRequested")),
    "verificationStatus": data.get("verificationStatus") or "none",
    "governmentRequested": bool(data.get("governmentRequested")),
    "governmentApproved": bool(data.get("governmentApproved")),
    "governmentRejected": bool(data.get("governmentRejected")),
  }


def is_property_record(prop_id: str) -> bool:
  # Old clients parked inquiries under properties/transaction_* when the
  # transactions node refused the write.
  return not prop_id.startswith("transaction_")


def map_snapshot(snapshot: Any) -> List[dict]:
  return [map_property(prop_id, record) for prop_id, record in snapshot_items(snapshot) if is_property_record(prop_id)]


def is_tenant_visible(prop: dict) -> bool:
  return prop.get("isVerified") is True


def owned_by(uid: str) -> Predicate:
  return lambda prop: prop.get("landlordId") == uid


def matches_search(query: Optional[str]) -> Predicate:
  needle = (query or "").strip().lower()

  def _match(prop: dict) -> bool:
    if not needle:
      return True
    haystack = (
      prop.get("name"),
      prop.get("city") or prop.get("location"),
      prop.get("propertyType"),
      prop.get("listingType"),
    )
    return any(needle in str(value).lower() for value in haystack if value)

  return _match


def newest_first(properties: List[dict]) -> List[dict]:
  return sorted(properties, key=lambda p: p.get("createdAt") or 0, reverse=True)


def can_modify(identity: Identity, prop: dict) -> bool:
  return identity.is_admin or identity.is_council or prop.get("landlordId") == identity.uid


def ensure_can_modify(identity: Identity, prop: dict) -> None:
  if not can_modify(identity, prop):
    raise PermissionDenied("Only the owning landlord or an administrator may change this property.")


def build_property_record(payload: PropertyCreate, identity: Identity) -> dict:
  name = to_clean_string(payload.name)
  city = to_clean_string(payload.city)
  if not name or not city or payload.price is None:
    raise ValidationFailed("Please provide name, city and price.")
  timestamp = now_ms()
  record = {
    "name": name,
    "city": city,
    "location": city,
    "price": int(payload.price),
    "propertyType": payload.propertyType,
    "listingType": payload.listingType,
    "type": payload.listingType,
    "description": payload.description,
    "bedrooms": payload.bedrooms,
    "bathrooms": payload.bathrooms,
    "area": payload.area,
    "sizeUnit": payload.sizeUnit,
    "mainImage": to_clean_string(payload.mainImage),
    "landTitle": to_clean_string(payload.landTitle),
    "isVerified": False,
    "verificationRequested": False,
    "verificationStatus": "none",
    "status": "listed",
    "createdAt": timestamp,
    "updatedAt": timestamp,
    "lastModifiedAt": timestamp,
    "lastModifiedBy": ADMIN if identity.is_admin else identity.role,
  }
  if identity.is_admin:
    record["landlordId"] = ADMIN
    record["landlordName"] = "Admin"
  else:
    record["landlordId"] = identity.uid
    record["landlordName"] = identity.display_name
  return {key: value for key, value in record.items() if value is not None}


async def find_property(client: httpx.AsyncClient, settings: Settings, property_id: str) -> Optional[dict]:
  if not is_valid_key(property_id):
    return None
  _, record = await firebase_request(client, settings, RESOURCE, record_id=property_id)
  if not isinstance(record, dict):
    return None
  return map_property(property_id, record)


async def get_property(client: httpx.AsyncClient, settings: Settings, property_id: str) -> dict:
  prop = await find_property(client, settings, property_id)
  if prop is None:
    raise NotFound("Property not found.")
  return prop


async def list_properties(
  client: httpx.AsyncClient,
  settings: Settings,
  predicate: Optional[Predicate] = None,
) -> List[dict]:
  _, snapshot = await firebase_request(client, settings, RESOURCE)
  properties = map_snapshot(snapshot)
  if predicate:
    properties = [p for p in properties if predicate(p)]
  return newest_first(properties)


async def new_property_id(client: httpx.AsyncClient, settings: Settings, property_id: Optional[str] = None) -> str:
  if property_id is None:
    return generate_id("prop")
  if not is_valid_key(property_id) or not is_property_record(property_id):
    raise ValidationFailed("Invalid property id.")
  if await find_property(client, settings, property_id) is not None:
    raise ValidationFailed(f"Property {property_id} already exists.")
  return property_id


async def write_property(client: httpx.AsyncClient, settings: Settings, property_id: str, record: dict) -> dict:
  await firebase_request(client, settings, RESOURCE, method="PUT", record_id=property_id, body=record)
  logger.info("property %s created by %s", property_id, record.get("lastModifiedBy"))
  return map_property(property_id, record)


async def update_property(
  client: httpx.AsyncClient,
  settings: Settings,
  property_id: str,
  patch: Dict[str, Any],
  identity: Identity,
) -> dict:
  existing = await get_property(client, settings, property_id)
  ensure_can_modify(identity, existing)
  blocked = sorted(set(patch) & PROTECTED_FIELDS)
  if blocked:
    raise ValidationFailed(f"Fields cannot be changed here: {', '.join(blocked)}.")
  body = dict(patch)
  if "name" in body:
    body["name"] = to_clean_string(body["name"])
    if not body["name"]:
      raise ValidationFailed("Name cannot be empty.")
  if "city" in body:
    body["city"] = to_clean_string(body["city"])
    if not body["city"]:
      raise ValidationFailed("City cannot be empty.")
    body["location"] = body["city"]
  if "listingType" in body:
    body["type"] = body["listingType"]
  stamp = next_stamp(existing.get("updatedAt"))
  body.update({
    "updatedAt": stamp,
    "lastModifiedAt": stamp,
    "lastModifiedBy": ADMIN if identity.is_admin else identity.role,
  })
  await firebase_request(client, settings, RESOURCE, method="PATCH", record_id=property_id, body=body)
  return map_property(property_id, {**existing, **body})


async def delete_property(client: httpx.AsyncClient, settings: Settings, property_id: str, identity: Identity) -> None:
  existing = await get_property(client, settings, property_id)
  if not (identity.is_admin or existing.get("landlordId") == identity.uid):
    raise PermissionDenied("Only the owning landlord or an administrator may delete this property.")
  await firebase_request(client, settings, RESOURCE, method="DELETE", record_id=property_id)
  logger.info("property %s deleted by %s", property_id, identity.uid)


async def subscribe_properties(
  client: httpx.AsyncClient,
  settings: Settings,
  predicate: Optional[Predicate] = None,
) -> AsyncIterator[List[dict]]:
  async for snapshot in firebase_stream(client, settings, RESOURCE):
    properties = map_snapshot(snapshot)
    if predicate:
      properties = [p for p in properties if predicate(p)]
    yield newest_first(properties)
