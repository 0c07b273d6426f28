import httpx
import pytest

from conftest import MOBILE_MONEY, add_property

from ittestate.core.errors import StoreUnavailable, ValidationFailed
from ittestate.core.security import Identity
from ittestate.services import ledger


def inquiry(**overrides):
  body = {
    "propertyId": "p1",
    "name": "Tina Ngono",
    "email": "Tina@Example.cm",
    "phone": "650000111",
    "message": "Can I visit on Saturday?",
    "inquiryType": "viewing",
  }
  body.update(overrides)
  return body


def test_inquiry_is_recorded_for_verified_property(client, db, people):
  add_property(db, "p1", isVerified=True, name="Villa Kribi")
  resp = client.post("/api/transactions/inquiries", json=inquiry(), headers=people["tina"])
  assert resp.status_code == 201
  entry = resp.json()
  assert entry["type"] == "Property Inquiry"
  assert entry["amount"] == 0
  assert entry["status"] == "pending"
  assert entry["tenantEmail"] == "tina@example.cm"
  assert entry["landlordId"] == "lord"
  stored = db.get(f"transactions/{entry['id']}")
  assert stored["inquiryDetails"]["type"] == "viewing"
  assert stored["timestamp"] == entry["timestamp"]


def test_inquiries_need_a_verified_property_and_phone(client, db, people):
  add_property(db, "p1")
  assert client.post("/api/transactions/inquiries", json=inquiry(), headers=people["tina"]).status_code == 400
  add_property(db, "p2", isVerified=True)
  resp = client.post("/api/transactions/inquiries", json=inquiry(propertyId="p2", phone=" "), headers=people["tina"])
  assert resp.status_code == 400
  assert db.get("transactions") is None


def test_mock_purchase_defaults_to_property_price(client, db, people):
  add_property(db, "p1", isVerified=True, price=25000000)
  resp = client.post(
    "/api/transactions/payments",
    json={"propertyId": "p1", "transactionType": "sale", "payment": MOBILE_MONEY},
    headers=people["tina"],
  )
  assert resp.status_code == 201
  entry = resp.json()
  assert entry["type"] == "Property Sale"
  assert entry["amount"] == 25000000
  assert entry["status"] == "pending"
  assert entry["paymentReference"].startswith("pay_")


def test_mock_payment_validation(client, db, people):
  add_property(db, "p1", isVerified=True)
  resp = client.post(
    "/api/transactions/payments",
    json={"propertyId": "p1", "transactionType": "rent", "payment": {"method": "orange"}},
    headers=people["tina"],
  )
  assert resp.status_code == 400
  assert db.get("transactions") is None


def test_listing_visibility_per_role(client, db, people):
  db.set("transactions/t1", {"type": "Property Inquiry", "amount": 0, "tenantId": "tina", "landlordId": "lord", "timestamp": 3})
  db.set("transactions/t2", {"type": "Property Sale", "amount": 5, "buyerEmail": "tina@example.cm", "landlordId": "other_lord", "timestamp": 2})
  db.set("transactions/t3", {"type": "Admin Property Creation", "amount": 0, "landlordId": "lord", "isAdminCreated": True, "timestamp": 1})
  db.set("transactions/t4", {"type": "Property Rental", "amount": 7, "tenantId": "someone", "landlordId": "other_lord", "timestamp": 4})

  def ids(who):
    return [e["id"] for e in client.get("/api/transactions", headers=people[who]).json()]

  assert ids("admin") == ["t4", "t1", "t2", "t3"]
  assert ids("tina") == ["t1", "t2"]
  assert ids("lord") == ["t1"]
  assert ids("other_lord") == ["t4", "t2"]


def test_merge_includes_legacy_and_embedded_fees_once():
  transactions = {
    "fee_p1": {"type": "Platform Fee", "amount": 1000, "status": "completed", "propertyId": "p1", "timestamp": 10},
  }
  properties = {
    "p1": {"name": "A", "platformFee": {"amount": 1000, "status": "completed", "transactionId": "fee_p1", "paidAt": 10}},
    "p2": {"name": "B", "landlordId": "lord", "platformFee": {"amount": 1000, "status": "completed", "transactionId": "tx_old", "paidAt": 30}},
    "transaction_9": {"type": "Property Inquiry", "amount": 0, "tenantId": "tina", "timestamp": 20},
  }
  merged = ledger.merge_ledger(transactions, properties)
  assert [e["id"] for e in merged] == ["tx_old", "transaction_9", "fee_p1"]
  assert merged[0]["embedded"] is True
  assert merged[0]["type"] == "Platform Fee"
  assert merged[1]["legacy"] is True


def test_status_moves_only_from_pending(client, db, people):
  db.set("transactions/t1", {"type": "Property Sale", "amount": 5, "status": "pending"})
  assert client.patch("/api/transactions/t1/status", json={"status": "completed"}, headers=people["lord"]).status_code == 403
  resp = client.patch("/api/transactions/t1/status", json={"status": "completed"}, headers=people["admin"])
  assert resp.status_code == 200
  assert db.get("transactions/t1")["status"] == "completed"
  assert db.get("transactions/t1")["updatedAt"] > 0
  again = client.patch("/api/transactions/t1/status", json={"status": "failed"}, headers=people["admin"])
  assert again.status_code == 409
  assert client.patch("/api/transactions/t1/status", json={"status": "pending"}, headers=people["admin"]).status_code == 422
  assert client.patch("/api/transactions/none/status", json={"status": "failed"}, headers=people["admin"]).status_code == 404


def test_status_update_reaches_embedded_fee(client, db, people):
  add_property(db, "p2", platformFee={"amount": 1000, "status": "pending", "transactionId": "tx_old"})
  resp = client.patch("/api/transactions/tx_old/status", json={"status": "failed"}, headers=people["admin"])
  assert resp.status_code == 200
  assert resp.json()["embedded"] is True
  stored = db.get("properties/p2")
  assert stored["platformFee"]["status"] == "failed"
  assert stored["platformFee"]["amount"] == 1000
  assert stored["adminUpdated"] is True


def test_summary_is_admin_only(client, db, people):
  db.set("transactions/t1", {"type": "Platform Fee", "amount": 1000, "status": "completed", "timestamp": 1})
  db.set("transactions/t2", {"type": "Property Sale", "amount": 500, "status": "pending", "timestamp": 2})
  db.set("transactions/t3", {"type": "Property Rental", "amount": 300, "status": "failed", "timestamp": 3})
  assert client.get("/api/transactions/summary", headers=people["tina"]).status_code == 403
  summary = client.get("/api/transactions/summary", headers=people["admin"]).json()
  assert summary == {
    "total": 3,
    "completed": 1,
    "pending": 1,
    "failed": 1,
    "platformFees": 1,
    "completedAmount": 1000.0,
  }


@pytest.mark.anyio
async def test_platform_fee_is_written_once(http_client, settings, db):
  record = {"name": "A", "landlordId": "lord", "createdAt": 5}
  receipt = {"reference": "pay_1", "paymentMethod": "Orange Money", "payer": "***111", "amount": 1000, "paidAt": 6}
  _, entry = ledger.build_platform_fee("p1", record, receipt)
  assert await ledger.record_platform_fee(http_client, settings, entry) == "fee_p1"
  db.set("transactions/fee_p1/status", "failed")
  assert await ledger.record_platform_fee(http_client, settings, entry) == "fee_p1"
  assert db.get("transactions/fee_p1/status") == "failed"


@pytest.mark.anyio
async def test_generic_entries_need_type_and_amount(http_client, settings):
  with pytest.raises(ValidationFailed):
    await ledger.record_transaction(http_client, settings, {"type": "Property Sale"})


def test_tenant_email_match_is_case_insensitive():
  visible = ledger.visible_to(Identity(uid="u9", role="tenant", email="Tina@Example.cm"))
  assert visible({"tenantEmail": "tina@example.cm"})
  assert not visible({"tenantEmail": "someone@example.cm"})


@pytest.mark.anyio
async def test_missing_push_id_is_a_store_failure(settings):
  def handler(request):
    return httpx.Response(200, json=None)

  async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
    with pytest.raises(StoreUnavailable):
      await ledger.record_transaction(client, settings, {"type": "Property Sale", "amount": 5})


@pytest.mark.anyio
async def test_ledger_stream_rereads_embedded_fees(http_client, settings, db):
  db.set("transactions/t1", {"type": "Property Sale", "amount": 5, "status": "pending", "timestamp": 1})
  db.stream_events["transactions"] = [("put", {"path": "/t1/status", "data": "completed"})]
  seen = []
  async for entries in ledger.subscribe_transactions(http_client, settings, Identity(uid="admin", role="admin")):
    seen.append(sorted(e["id"] for e in entries))
    add_property(db, "p2", platformFee={"amount": 1000, "status": "pending", "transactionId": "tx_old"})
  assert seen == [["t1"], ["t1", "tx_old"]]


def test_legacy_status_values_are_served(client, db, people):
  db.set("transactions/t9", {"type": "Deposit", "amount": 5, "status": "refunded", "timestamp": 1})
  add_property(db, "p3", isVerified=True, verificationStatus="approved")
  entries = client.get("/api/transactions", headers=people["admin"]).json()
  assert [(e["type"], e["status"]) for e in entries] == [("Deposit", "refunded")]
  assert client.get("/api/properties/p3", headers=people["tina"]).json()["verificationStatus"] == "approved"
