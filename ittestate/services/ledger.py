"""Append-only ledger of platform fees, inquiries and mocked payments.

Entries live under `transactions/`. Properties written by the legacy web
client also carry an embedded `platformFee` object, and a few inquiries were
parked as `properties/transaction_*` records; both are read back as ledger
entries so the listings stay complete.
"""

from typing import Any, AsyncIterator, Dict, List, Optional, Tuple

import httpx

from ..core.errors import InvalidTransition, NotFound, PermissionDenied, StoreUnavailable, ValidationFailed
from ..core.firebase import firebase_request, firebase_stream, is_valid_key
from ..core.logging import get_logger
from ..core.security import ADMIN, Identity
from ..core.settings import Settings
from ..models.transaction import InquiryCreate, PurchaseCreate
from . import property_store
from .records import next_stamp, now_ms, snapshot_items, to_clean_string

logger = get_logger("ledger")

RESOURCE = "transactions"

PLATFORM_FEE = "Platform Fee"
PROPERTY_INQUIRY = "Property Inquiry"
PROPERTY_SALE = "Property Sale"
PROPERTY_RENTAL = "Property Rental"
ADMIN_CREATION = "Admin Property Creation"

PENDING = "pending"
COMPLETED = "completed"
FAILED = "failed"


def fee_transaction_id(property_id: str) -> str:
  return f"fee_{property_id}"


async def record_transaction(client: httpx.AsyncClient, settings: Settings, entry: Dict[str, Any]) -> str:
  if not entry.get("type") or entry.get("amount") is None:
    raise ValidationFailed("Ledger entries need a type and an amount.")
  stamp = now_ms()
  body = {"status": PENDING, "timestamp": stamp, "createdAt": stamp, **entry}
  _, snapshot = await firebase_request(client, settings, RESOURCE, method="POST", body=body)
  tx_id = snapshot.get("name") if isinstance(snapshot, dict) else None
  if not tx_id:
    raise StoreUnavailable("Database did not return a transaction id.")
  logger.info("recorded %s %s for property %s (%s)", body["type"], tx_id, body.get("propertyId"), body["amount"])
  return tx_id


def build_platform_fee(
  property_id: str,
  record: Dict[str, Any],
  receipt: Optional[Dict[str, Any]],
) -> Tuple[Dict[str, Any], Dict[str, Any]]:
  """Return the property's `platformFee` object and the matching ledger entry.

  A missing receipt means an admin created the property and the fee is waived.
  """
  admin_created = receipt is None
  paid_at = receipt["paidAt"] if receipt else record.get("createdAt") or now_ms()
  fee = {
    "amount": 0 if admin_created else receipt["amount"],
    "status": COMPLETED,
    "paymentMethod": "Admin Creation" if admin_created else receipt["paymentMethod"],
    "paidAt": paid_at,
    "transactionId": fee_transaction_id(property_id),
    "isAdminCreated": admin_created,
  }
  entry = {
    "type": ADMIN_CREATION if admin_created else PLATFORM_FEE,
    "amount": fee["amount"],
    "status": COMPLETED,
    "propertyId": property_id,
    "propertyName": record.get("name"),
    "landlordId": record.get("landlordId"),
    "landlordName": record.get("landlordName"),
    "paymentMethod": fee["paymentMethod"],
    "isAdminCreated": admin_created,
    "timestamp": paid_at,
    "createdAt": paid_at,
    "description": (
      f"Property created by admin: {record.get('name')}"
      if admin_created
      else f"Platform fee payment for property: {record.get('name')}"
    ),
  }
  if receipt:
    entry["paymentReference"] = receipt["reference"]
    entry["payer"] = receipt["payer"]
  return fee, entry


async def record_platform_fee(
  client: httpx.AsyncClient,
  settings: Settings,
  entry: Dict[str, Any],
) -> str:
  """Write the fee entry once per property, keyed by the property id."""
  tx_id = fee_transaction_id(entry["propertyId"])
  _, existing = await firebase_request(client, settings, RESOURCE, record_id=tx_id)
  if isinstance(existing, dict):
    return tx_id
  await firebase_request(client, settings, RESOURCE, method="PUT", record_id=tx_id, body=entry)
  logger.info("recorded %s %s for property %s", entry["type"], tx_id, entry["propertyId"])
  return tx_id


def build_inquiry(prop: Dict[str, Any], identity: Identity, payload: InquiryCreate) -> Dict[str, Any]:
  name = to_clean_string(payload.name)
  phone = to_clean_string(payload.phone)
  if not name or not phone:
    raise ValidationFailed("Name, email and phone are required.")
  message = to_clean_string(payload.message)
  return {
    "propertyId": prop["id"],
    "propertyName": prop.get("name"),
    "landlordId": prop.get("landlordId"),
    "landlordName": prop.get("landlordName"),
    "tenantId": identity.uid,
    "tenantName": name,
    "tenantEmail": payload.email.lower(),
    "tenantPhone": phone,
    "amount": 0,
    "type": PROPERTY_INQUIRY,
    "inquiryType": payload.inquiryType,
    "message": message,
    "status": PENDING,
    "description": f"{payload.inquiryType} inquiry for {prop.get('name')}",
    "inquiryDetails": {
      "name": name,
      "email": payload.email.lower(),
      "phone": phone,
      "message": message,
      "type": payload.inquiryType,
    },
  }


def build_purchase(
  prop: Dict[str, Any],
  identity: Identity,
  payload: PurchaseCreate,
  receipt: Dict[str, Any],
) -> Dict[str, Any]:
  is_sale = payload.transactionType == "sale"
  return {
    "propertyId": prop["id"],
    "propertyName": prop.get("name"),
    "landlordId": prop.get("landlordId"),
    "landlordName": prop.get("landlordName"),
    "buyerId": identity.uid,
    "buyerName": to_clean_string(payload.buyerName) or identity.display_name,
    "buyerEmail": (payload.buyerEmail or identity.email or "").lower() or None,
    "buyerPhone": to_clean_string(payload.buyerPhone),
    "tenantId": identity.uid,
    "amount": receipt["amount"],
    "type": PROPERTY_SALE if is_sale else PROPERTY_RENTAL,
    "transactionType": payload.transactionType,
    "status": PENDING,
    "paymentMethod": receipt["paymentMethod"],
    "paymentReference": receipt["reference"],
    "description": f"{'Purchase' if is_sale else 'Rental'} of {prop.get('name')}",
    "propertyDetails": {
      "type": prop.get("propertyType"),
      "location": prop.get("city") or prop.get("location"),
      "price": prop.get("price"),
    },
  }


def map_transaction(tx_id: str, record: Dict[str, Any], **extra: Any) -> Dict[str, Any]:
  data = dict(record or {})
  return {
    **data,
    "id": tx_id,
    "type": data.get("type") or PROPERTY_INQUIRY,
    "amount": data.get("amount") or 0,
    "status": data.get("status") or PENDING,
    "timestamp": data.get("timestamp") or data.get("createdAt"),
    **extra,
  }


def map_embedded_fee(prop_id: str, prop: Dict[str, Any]) -> Dict[str, Any]:
  fee = prop.get("platformFee") or {}
  admin_created = bool(fee.get("isAdminCreated"))
  stamp = fee.get("paidAt") or prop.get("createdAt")
  return {
    "id": fee.get("transactionId") or prop_id,
    "propertyId": prop_id,
    "propertyName": prop.get("name"),
    "propertyDetails": {
      "type": prop.get("propertyType"),
      "location": prop.get("city") or prop.get("location"),
      "price": prop.get("price"),
      "listingType": prop.get("listingType"),
    },
    "landlordId": prop.get("landlordId") or ADMIN,
    "landlordName": prop.get("landlordName") or "Admin",
    "amount": fee.get("amount") or 0,
    "type": ADMIN_CREATION if admin_created else PLATFORM_FEE,
    "status": fee.get("status") or PENDING,
    "timestamp": stamp,
    "createdAt": stamp,
    "description": (
      f"Property created by admin: {prop.get('name')}"
      if admin_created
      else f"Platform fee payment for property: {prop.get('name')}"
    ),
    "paymentMethod": fee.get("paymentMethod"),
    "isAdminCreated": admin_created,
    "embedded": True,
  }


def merge_ledger(transactions_snapshot: Any, properties_snapshot: Any) -> List[Dict[str, Any]]:
  entries = [map_transaction(tx_id, record) for tx_id, record in snapshot_items(transactions_snapshot)]
  known = {entry["id"] for entry in entries}
  for prop_id, record in snapshot_items(properties_snapshot):
    if not property_store.is_property_record(prop_id):
      entries.append(map_transaction(prop_id, record, legacy=True))
    elif isinstance(record.get("platformFee"), dict):
      fee = map_embedded_fee(prop_id, record)
      if fee["id"] not in known:
        entries.append(fee)
  return sorted(entries, key=lambda e: e.get("timestamp") or e.get("createdAt") or 0, reverse=True)


def visible_to(identity: Identity):
  email = (identity.email or "").lower()

  def _visible(entry: Dict[str, Any]) -> bool:
    if identity.is_admin:
      return True
    if entry.get("landlordId") == identity.uid:
      return not entry.get("isAdminCreated")
    if identity.uid in (entry.get("tenantId"), entry.get("buyerId")):
      return True
    if email and email in ((entry.get("tenantEmail") or "").lower(), (entry.get("buyerEmail") or "").lower()):
      return True
    return False

  return _visible


async def list_transactions(client: httpx.AsyncClient, settings: Settings, identity: Identity) -> List[Dict[str, Any]]:
  _, transactions = await firebase_request(client, settings, RESOURCE)
  _, properties = await firebase_request(client, settings, property_store.RESOURCE)
  return [entry for entry in merge_ledger(transactions, properties) if visible_to(identity)(entry)]


async def subscribe_transactions(
  client: httpx.AsyncClient,
  settings: Settings,
  identity: Identity,
) -> AsyncIterator[List[Dict[str, Any]]]:
  visible = visible_to(identity)
  async for transactions in firebase_stream(client, settings, RESOURCE):
    # Embedded fees live on the property records, which this stream does not follow.
    _, properties = await firebase_request(client, settings, property_store.RESOURCE)
    yield [entry for entry in merge_ledger(transactions, properties) if visible(entry)]


def summarize(entries: List[Dict[str, Any]]) -> Dict[str, Any]:
  completed = [e for e in entries if e.get("status") == COMPLETED]
  return {
    "total": len(entries),
    "completed": len(completed),
    "pending": sum(1 for e in entries if e.get("status") == PENDING),
    "failed": sum(1 for e in entries if e.get("status") == FAILED),
    "platformFees": sum(1 for e in entries if e.get("type") == PLATFORM_FEE),
    "completedAmount": float(sum(float(e.get("amount") or 0) for e in completed)),
  }


def _check_status_change(current: Optional[str], new_status: str) -> None:
  if (current or PENDING) != PENDING:
    raise InvalidTransition(f"Transaction is already {current}.")
  if new_status not in (COMPLETED, FAILED):
    raise ValidationFailed("Status must be completed or failed.")


async def update_status(
  client: httpx.AsyncClient,
  settings: Settings,
  tx_id: str,
  new_status: str,
  identity: Identity,
) -> Dict[str, Any]:
  if not identity.is_admin:
    raise PermissionDenied("Only administrators may change transaction status.")
  if not is_valid_key(tx_id):
    raise NotFound("Transaction not found.")

  _, record = await firebase_request(client, settings, RESOURCE, record_id=tx_id)
  if isinstance(record, dict):
    _check_status_change(record.get("status"), new_status)
    patch = {"status": new_status, "updatedAt": next_stamp(record.get("updatedAt"))}
    await firebase_request(client, settings, RESOURCE, method="PATCH", record_id=tx_id, body=patch)
    logger.info("transaction %s -> %s by %s", tx_id, new_status, identity.uid)
    return map_transaction(tx_id, {**record, **patch})

  _, properties = await firebase_request(client, settings, property_store.RESOURCE)
  for prop_id, prop in snapshot_items(properties):
    if prop_id == tx_id and not property_store.is_property_record(prop_id):
      _check_status_change(prop.get("status"), new_status)
      patch = {"status": new_status, "updatedAt": next_stamp(prop.get("updatedAt"))}
      await firebase_request(client, settings, property_store.RESOURCE, method="PATCH", record_id=prop_id, body=patch)
      logger.info("legacy transaction %s -> %s by %s", tx_id, new_status, identity.uid)
      return map_transaction(prop_id, {**prop, **patch}, legacy=True)
    fee = prop.get("platformFee")
    if isinstance(fee, dict) and fee.get("transactionId") == tx_id:
      _check_status_change(fee.get("status"), new_status)
      patch = {
        "platformFee/status": new_status,
        "updatedAt": next_stamp(prop.get("updatedAt")),
        "adminUpdated": True,
      }
      await firebase_request(client, settings, property_store.RESOURCE, method="PATCH", record_id=prop_id, body=patch)
      logger.info("embedded fee %s on %s -> %s by %s", tx_id, prop_id, new_status, identity.uid)
      return map_embedded_fee(prop_id, {**prop, "platformFee": {**fee, "status": new_status}})
  raise NotFound("Transaction not found.")
