import httpx
import pytest

from ittestate.core.errors import MarketplaceError, PermissionDenied, StaleRecord, StoreUnavailable, Timeout
from ittestate.core.firebase import (
  apply_stream_event,
  build_firebase_url,
  firebase_read_versioned,
  firebase_replace_if_match,
  firebase_request,
  firebase_stream,
  is_valid_key,
  iter_sse,
)


def test_url_carries_secret(settings):
  url = build_firebase_url(settings, "properties", "p1")
  assert url == "https://itt-test.firebaseio.test/properties/p1.json?auth=db-secret"
  assert build_firebase_url(settings, "/chats/c1/messages/").endswith("/chats/c1/messages.json?auth=db-secret")


def test_missing_database_url_is_a_server_error(settings):
  unconfigured = settings.model_copy(update={"firebase_database_url": None})
  with pytest.raises(MarketplaceError) as exc:
    build_firebase_url(unconfigured, "properties")
  assert exc.value.status_code == 500


@pytest.mark.parametrize(
  "key,valid",
  [
    ("prop_1700000000000_a1b2c3", True),
    ("", False),
    ("   ", False),
    ("a.b", False),
    ("a/b", False),
    ("a#b", False),
    ("a$b", False),
    ("a[b]", False),
    ("x" * 768, True),
    ("x" * 769, False),
    ("é" * 384, True),
    ("é" * 385, False),
  ],
)
def test_key_rules(key, valid):
  assert is_valid_key(key) is valid


def test_put_and_patch_events_update_the_snapshot():
  snapshot = apply_stream_event(None, "put", {"path": "/", "data": {"a": {"x": 1}, "b": {"x": 2}}})
  snapshot = apply_stream_event(snapshot, "patch", {"path": "/a", "data": {"y": 3, "x": None}})
  assert snapshot == {"a": {"y": 3}, "b": {"x": 2}}
  snapshot = apply_stream_event(snapshot, "put", {"path": "/b/x", "data": None})
  assert snapshot == {"a": {"y": 3}}
  snapshot = apply_stream_event(snapshot, "patch", {"path": "/", "data": {"c/z": 4}})
  assert snapshot == {"a": {"y": 3}, "c": {"z": 4}}
  assert apply_stream_event(snapshot, "put", {"path": "/", "data": None}) is None


def test_applying_events_does_not_mutate_previous_snapshots():
  first = apply_stream_event(None, "put", {"path": "/", "data": {"a": {"x": 1}}})
  second = apply_stream_event(first, "patch", {"path": "/a", "data": {"x": 2}})
  assert first == {"a": {"x": 1}}
  assert second == {"a": {"x": 2}}


async def _lines(*lines):
  for line in lines:
    yield line


@pytest.mark.anyio
async def test_sse_parser_groups_fields_into_events():
  events = [
    event
    async for event in iter_sse(
      _lines("event: put", 'data: {"path": "/"', 'data: , "data": 1}', "", ": comment", "event: keep-alive", "data: null", "")
    )
  ]
  assert events == [("put", '{"path": "/"\n, "data": 1}'), ("keep-alive", "null")]


def _client(handler) -> httpx.AsyncClient:
  return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.mark.anyio
async def test_status_codes_map_to_errors(settings):
  codes = {"denied": 401, "forbidden": 403, "broken": 500}

  def handler(request):
    name = request.url.path.strip("/").removesuffix(".json")
    return httpx.Response(codes[name], json={"error": name})

  async with _client(handler) as client:
    with pytest.raises(PermissionDenied):
      await firebase_request(client, settings, "denied")
    with pytest.raises(PermissionDenied):
      await firebase_request(client, settings, "forbidden")
    with pytest.raises(StoreUnavailable):
      await firebase_request(client, settings, "broken")


@pytest.mark.anyio
async def test_transport_failures_map_to_errors(settings):
  def slow(request):
    raise httpx.ReadTimeout("slow", request=request)

  def down(request):
    raise httpx.ConnectError("down", request=request)

  async with _client(slow) as client:
    with pytest.raises(Timeout):
      await firebase_request(client, settings, "properties")
  async with _client(down) as client:
    with pytest.raises(StoreUnavailable):
      await firebase_request(client, settings, "properties")


@pytest.mark.anyio
async def test_conditional_replace_detects_concurrent_writes(http_client, settings, db):
  db.set("properties/p1", {"name": "A"})
  record, etag = await firebase_read_versioned(http_client, settings, "properties", "p1")
  assert record == {"name": "A"}
  assert etag == db.etag("properties/p1")

  db.set("properties/p1/name", "B")
  with pytest.raises(StaleRecord):
    await firebase_replace_if_match(http_client, settings, "properties", "p1", {"name": "C"}, etag)
  assert db.get("properties/p1") == {"name": "B"}

  _, fresh = await firebase_read_versioned(http_client, settings, "properties", "p1")
  await firebase_replace_if_match(http_client, settings, "properties", "p1", {"name": "C"}, fresh)
  assert db.get("properties/p1") == {"name": "C"}


def _stream_body(*events):
  return "".join(f"event: {name}\ndata: {data}\n\n" for name, data in events).encode()


@pytest.mark.anyio
async def test_stream_yields_full_snapshots(settings):
  body = _stream_body(
    ("put", '{"path": "/", "data": {"p1": {"name": "A"}}}'),
    ("keep-alive", "null"),
    ("patch", '{"path": "/p1", "data": {"price": 10}}'),
    ("put", '{"path": "/p2", "data": {"name": "B"}}'),
  )

  def handler(request):
    assert request.headers["accept"] == "text/event-stream"
    return httpx.Response(200, content=body, headers={"content-type": "text/event-stream"})

  async with _client(handler) as client:
    snapshots = [snapshot async for snapshot in firebase_stream(client, settings, "properties")]
  assert snapshots == [
    {"p1": {"name": "A"}},
    {"p1": {"name": "A", "price": 10}},
    {"p1": {"name": "A", "price": 10}, "p2": {"name": "B"}},
  ]


@pytest.mark.anyio
async def test_cancelled_stream_raises_permission_denied(settings):
  body = _stream_body(("put", '{"path": "/", "data": {}}'), ("cancel", "null"))

  def handler(request):
    return httpx.Response(200, content=body)

  received = []
  async with _client(handler) as client:
    with pytest.raises(PermissionDenied):
      async for snapshot in firebase_stream(client, settings, "chats"):
        received.append(snapshot)
  assert received == [{}]


def test_failed_subscription_ends_with_error_event(client, db, people):
  db.failures[("GET", "transactions")] = 503
  with client.stream("GET", "/api/transactions/stream", headers=people["admin"]) as resp:
    body = "".join(resp.iter_text())
  assert body.startswith("event: error\n")
  assert '"status": 502' in body
