from fastapi import APIRouter, Depends, Request, status

from ..core.errors import ValidationFailed
from ..core.firebase import get_client
from ..core.security import ADMIN, Identity, require_roles, resolve_caller
from ..core.settings import Settings, get_settings
from ..models.transaction import InquiryCreate, PurchaseCreate, StatusUpdate, TransactionOut, TransactionSummary
from ..services import ledger, mock_gateway, property_store
from ..services.records import now_ms
from .streaming import sse_response

router = APIRouter(prefix="/api/transactions", tags=["transactions"])


async def listed_property(request: Request, settings: Settings, property_id: str) -> dict:
  prop = await property_store.get_property(get_client(request), settings, property_id)
  if not property_store.is_tenant_visible(prop):
    raise ValidationFailed("Only verified properties accept inquiries and payments.")
  return prop


async def append_entry(request: Request, settings: Settings, entry: dict) -> dict:
  stamp = now_ms()
  entry = {**entry, "timestamp": stamp, "createdAt": stamp}
  tx_id = await ledger.record_transaction(get_client(request), settings, entry)
  return ledger.map_transaction(tx_id, entry)


@router.get("", response_model=list[TransactionOut])
async def list_transactions(
  request: Request,
  identity: Identity = Depends(resolve_caller),
  settings: Settings = Depends(get_settings),
):
  return await ledger.list_transactions(get_client(request), settings, identity)


@router.get("/summary", response_model=TransactionSummary)
async def transaction_summary(
  request: Request,
  identity: Identity = Depends(resolve_caller),
  settings: Settings = Depends(get_settings),
):
  require_roles(identity, (ADMIN,), "read the ledger summary")
  return ledger.summarize(await ledger.list_transactions(get_client(request), settings, identity))


@router.get("/stream")
async def stream_transactions(
  request: Request,
  identity: Identity = Depends(resolve_caller),
  settings: Settings = Depends(get_settings),
):
  return sse_response(ledger.subscribe_transactions(get_client(request), settings, identity))


@router.post("/inquiries", response_model=TransactionOut, status_code=status.HTTP_201_CREATED)
async def create_inquiry(
  payload: InquiryCreate,
  request: Request,
  identity: Identity = Depends(resolve_caller),
  settings: Settings = Depends(get_settings),
):
  prop = await listed_property(request, settings, payload.propertyId)
  return await append_entry(request, settings, ledger.build_inquiry(prop, identity, payload))


@router.post("/payments", response_model=TransactionOut, status_code=status.HTTP_201_CREATED)
async def create_payment(
  payload: PurchaseCreate,
  request: Request,
  identity: Identity = Depends(resolve_caller),
  settings: Settings = Depends(get_settings),
):
  prop = await listed_property(request, settings, payload.propertyId)
  amount = payload.amount or prop.get("price")
  if not amount:
    raise ValidationFailed("This property has no price; provide an amount.")
  label = "purchase" if payload.transactionType == "sale" else "rental"
  receipt = await mock_gateway.charge(settings, payload.payment, int(amount), f"{label} of {prop['id']}")
  return await append_entry(request, settings, ledger.build_purchase(prop, identity, payload, receipt))


@router.patch("/{transaction_id}/status", response_model=TransactionOut)
async def update_transaction_status(
  transaction_id: str,
  payload: StatusUpdate,
  request: Request,
  identity: Identity = Depends(resolve_caller),
  settings: Settings = Depends(get_settings),
):
  return await ledger.update_status(get_client(request), settings, transaction_id, payload.status, identity)
