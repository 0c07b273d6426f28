"""Property verification workflow.

A property moves from a landlord's draft to a tenant-visible listing through
two human reviews: the platform admin, then the government council. The state
is not stored as a single field; it is derived from the flags the dashboards
have always written on the property record, and every transition rewrites
the record only if it is unchanged since it was read (ETag precondition), so
two reviewers acting on the same property cannot both win.
"""

from dataclasses import dataclass
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Tuple

import httpx

from ..core.errors import InvalidTransition, NotFound, PermissionDenied, StaleRecord
from ..core.firebase import firebase_read_versioned, firebase_replace_if_match, is_valid_key
from ..core.logging import get_logger
from ..core.security import ADMIN, APPROVAL_ROLES, LANDLORD, Identity
from ..core.settings import Settings
from . import property_store
from .records import next_stamp

logger = get_logger("verification")

DRAFT = "draft"
SUBMITTED = "submitted"
REJECTED = "rejected"
FORWARDED = "forwarded_to_government"
WITHDRAWN = "withdrawn_from_government"
REJECTED_BY_GOVERNMENT = "rejected_by_government"
VERIFIED = "verified"

TERMINAL_STATES = (REJECTED, REJECTED_BY_GOVERNMENT, VERIFIED)

SUBMIT = "submit"
REJECT = "reject"
FORWARD = "forward"
APPROVE = "approve"
WITHDRAW = "withdraw"

ACTIONS = (SUBMIT, REJECT, FORWARD, APPROVE, WITHDRAW)

PatchBuilder = Callable[[int], Dict[str, Any]]


@dataclass(frozen=True)
class Transition:
  source: str
  action: str
  actors: Tuple[str, ...]
  target: str
  build_patch: PatchBuilder
  owner_only: bool = False


def _submit_patch(ts: int) -> Dict[str, Any]:
  return {"verificationRequested": True, "verificationRequestedAt": ts}


def _admin_reject_patch(ts: int) -> Dict[str, Any]:
  return {
    "isVerified": False,
    "verificationStatus": "rejected",
    "verifiedAt": ts,
    "verifiedBy": "admin",
    "verificationRequested": False,
  }


def _forward_patch(ts: int) -> Dict[str, Any]:
  return {
    "verificationStatus": "forwarded_to_government",
    "forwardedAt": ts,
    "forwardedBy": "admin",
    "governmentRequested": True,
    "governmentRequestedAt": ts,
  }


def _approve_patch(ts: int) -> Dict[str, Any]:
  return {
    "governmentApproved": True,
    "governmentApprovedAt": ts,
    "verificationStatus": "approved_by_government",
    "isVerified": True,
    "verifiedAt": ts,
    "verifiedBy": "government",
  }


def _government_reject_patch(ts: int) -> Dict[str, Any]:
  return {
    "governmentApproved": False,
    "governmentRejected": True,
    "governmentRejectedAt": ts,
    "verificationStatus": "rejected_by_government",
  }


def _withdraw_patch(ts: int) -> Dict[str, Any]:
  return {
    "verificationStatus": "withdrawn_from_government",
    "governmentRequested": False,
    "withdrawnAt": ts,
  }


TRANSITIONS: Dict[Tuple[str, str], Transition] = {
  (t.source, t.action): t
  for t in (
    Transition(DRAFT, SUBMIT, (LANDLORD, ADMIN), SUBMITTED, _submit_patch, owner_only=True),
    Transition(SUBMITTED, REJECT, (ADMIN,), REJECTED, _admin_reject_patch),
    Transition(SUBMITTED, FORWARD, (ADMIN,), FORWARDED, _forward_patch),
    Transition(WITHDRAWN, REJECT, (ADMIN,), REJECTED, _admin_reject_patch),
    Transition(WITHDRAWN, FORWARD, (ADMIN,), FORWARDED, _forward_patch),
    Transition(FORWARDED, APPROVE, APPROVAL_ROLES, VERIFIED, _approve_patch),
    Transition(FORWARDED, REJECT, APPROVAL_ROLES, REJECTED_BY_GOVERNMENT, _government_reject_patch),
    Transition(FORWARDED, WITHDRAW, (ADMIN,), WITHDRAWN, _withdraw_patch),
  )
}


def derive_state(prop: Dict[str, Any]) -> str:
  status = prop.get("verificationStatus") or "none"
  if prop.get("isVerified") is True:
    return VERIFIED
  if prop.get("governmentRejected") or status == "rejected_by_government":
    return REJECTED_BY_GOVERNMENT
  if status == "rejected":
    return REJECTED
  if status == "forwarded_to_government" and prop.get("governmentRequested"):
    return FORWARDED
  if status == "withdrawn_from_government" and prop.get("verificationRequested"):
    return WITHDRAWN
  if prop.get("verificationRequested") and not prop.get("governmentRequested"):
    return SUBMITTED
  return DRAFT


def _actor_allowed(transition: Transition, identity: Identity, prop: Dict[str, Any]) -> bool:
  if identity.role not in transition.actors:
    return False
  if transition.owner_only and identity.role == LANDLORD:
    return prop.get("landlordId") == identity.uid
  return True


def available_actions(prop: Dict[str, Any], identity: Identity) -> List[str]:
  state = derive_state(prop)
  return [
    action
    for action in ACTIONS
    if (state, action) in TRANSITIONS and _actor_allowed(TRANSITIONS[(state, action)], identity, prop)
  ]


def plan_transition(prop: Dict[str, Any], action: str, identity: Identity) -> Tuple[Transition, Dict[str, Any]]:
  state = derive_state(prop)
  transition = TRANSITIONS.get((state, action))
  if transition is None:
    raise InvalidTransition(f"Cannot {action} a property in state '{state}'.")
  if not _actor_allowed(transition, identity, prop):
    raise PermissionDenied(f"Role '{identity.role}' may not {action} a property in state '{state}'.")
  ts = next_stamp(prop.get("updatedAt"))
  patch = transition.build_patch(ts)
  patch["updatedAt"] = ts
  patch["lastModifiedAt"] = ts
  patch["lastModifiedBy"] = "government" if identity.is_council else identity.role
  return transition, patch


async def apply_action(
  client: httpx.AsyncClient,
  settings: Settings,
  property_id: str,
  action: str,
  identity: Identity,
) -> Tuple[dict, Transition]:
  if not is_valid_key(property_id):
    raise NotFound("Property not found.")
  record, etag = await firebase_read_versioned(client, settings, property_store.RESOURCE, property_id)
  if not isinstance(record, dict):
    raise NotFound("Property not found.")
  prop = property_store.map_property(property_id, record)
  transition, patch = plan_transition(prop, action, identity)
  try:
    await firebase_replace_if_match(
      client, settings, property_store.RESOURCE, property_id, {**record, **patch}, etag
    )
  except StaleRecord as exc:
    logger.warning("property %s: %s by %s lost a concurrent write", property_id, action, identity.uid)
    raise InvalidTransition(f"Property changed while you were reviewing it; reload before trying to {action}.") from exc
  logger.info(
    "property %s: %s -> %s (%s by %s)", property_id, transition.source, transition.target, action, identity.uid
  )
  return property_store.map_property(property_id, {**record, **patch}), transition


def in_admin_queue(prop: Dict[str, Any]) -> bool:
  pending_review = prop.get("verificationRequested") and not prop.get("isVerified") and not prop.get("governmentRequested")
  withdrawn = prop.get("verificationStatus") == "withdrawn_from_government" and prop.get("verificationRequested")
  return bool(pending_review or withdrawn)


def in_government_queue(prop: Dict[str, Any]) -> bool:
  return bool(prop.get("governmentRequested")) and prop.get("verificationStatus") == "forwarded_to_government"


def admin_queue(properties: List[dict]) -> List[dict]:
  queue = [p for p in properties if in_admin_queue(p)]
  return sorted(queue, key=lambda p: p.get("verificationRequestedAt") or 0, reverse=True)


def government_queue(properties: List[dict]) -> List[dict]:
  queue = [
    {**p, "status": "approved" if p.get("governmentApproved") else "pending"}
    for p in properties
    if in_government_queue(p)
  ]
  return sorted(queue, key=lambda p: p.get("governmentRequestedAt") or 0, reverse=True)


async def fetch_queue(client: httpx.AsyncClient, settings: Settings, which: str) -> List[dict]:
  properties = await property_store.list_properties(client, settings)
  return admin_queue(properties) if which == ADMIN else government_queue(properties)


async def subscribe_queue(client: httpx.AsyncClient, settings: Settings, which: str) -> AsyncIterator[List[dict]]:
  build = admin_queue if which == ADMIN else government_queue
  async for properties in property_store.subscribe_properties(client, settings):
    yield build(properties)


def describe(prop: Dict[str, Any], identity: Optional[Identity] = None) -> Dict[str, Any]:
  state = derive_state(prop)
  return {
    "propertyId": prop.get("id"),
    "state": state,
    "terminal": state in TERMINAL_STATES,
    "visibleToTenants": property_store.is_tenant_visible(prop),
    "actions": available_actions(prop, identity) if identity else [],
  }
