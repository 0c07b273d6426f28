import hashlib
import json
import os
from typing import Any, Callable, Dict, List, Optional, Tuple

import httpx
import pytest

os.environ["FIREBASE_DATABASE_URL"] = "https://itt-test.firebaseio.test"
os.environ["FIREBASE_DATABASE_SECRET"] = "db-secret"
os.environ["JWT_SECRET"] = "test-secret"
os.environ.pop("FIREBASE_API_KEY", None)
os.environ.pop("SMTP_HOST", None)
os.environ.pop("DIGEST_ENABLED", None)

from fastapi.testclient import TestClient  # noqa: E402

from ittestate.core.security import Identity, create_access_token  # noqa: E402
from ittestate.core.settings import get_settings  # noqa: E402

get_settings.cache_clear()

from ittestate.main import create_app  # noqa: E402


def _parts(path: str) -> List[str]:
  return [part for part in path.split("/") if part]


class FakeDatabase:
  """In-memory stand-in for the realtime database REST interface."""

  def __init__(self):
    self.tree: Dict[str, Any] = {}
    self.requests: List[Tuple[str, str]] = []
    self.failures: Dict[Tuple[str, str], int] = {}
    self.stream_events: Dict[str, List[Tuple[str, Any]]] = {}
    self.sign_ups = 0
    self.before_request: List[Callable[[str, str], None]] = []
    self._push = 0

  def get(self, path: str) -> Any:
    node: Any = self.tree
    for part in _parts(path):
      if not isinstance(node, dict) or part not in node:
        return None
      node = node[part]
    return node

  def set(self, path: str, value: Any) -> None:
    parts = _parts(path)
    node = self.tree
    for part in parts[:-1]:
      child = node.get(part)
      if not isinstance(child, dict):
        child = node[part] = {}
      node = child
    if value is None:
      node.pop(parts[-1], None)
    else:
      node[parts[-1]] = value

  def etag(self, path: str) -> str:
    return hashlib.sha1(json.dumps(self.get(path), sort_keys=True).encode()).hexdigest()

  def push_id(self) -> str:
    self._push += 1
    return f"-Npush{self._push:08d}"

  def _stream(self, path: str) -> httpx.Response:
    events = [("put", {"path": "/", "data": self.get(path)})] + self.stream_events.get(path, [])
    body = "".join(f"event: {event}\ndata: {json.dumps(data)}\n\n" for event, data in events)
    return httpx.Response(200, headers={"content-type": "text/event-stream"}, content=body.encode())

  def handler(self, request: httpx.Request) -> httpx.Response:
    if request.url.host == "identitytoolkit.googleapis.com":
      self.sign_ups += 1
      return httpx.Response(200, json={"localId": f"anon{self.sign_ups}", "idToken": "x"})

    path = request.url.path
    if path.endswith(".json"):
      path = path[: -len(".json")]
    path = path.strip("/")
    method = request.method
    self.requests.append((method, path))
    for hook in self.before_request:
      hook(method, path)

    failure = self.failures.get((method, path))
    if failure:
      return httpx.Response(failure, json={"error": "simulated"})
    if request.url.params.get("auth") != "db-secret":
      return httpx.Response(401, json={"error": "Permission denied"})

    body = json.loads(request.content) if request.content else None
    if method == "GET":
      if "text/event-stream" in request.headers.get("accept", ""):
        return self._stream(path)
      if request.headers.get("x-firebase-etag") == "true":
        return httpx.Response(200, headers={"ETag": self.etag(path)}, json=self.get(path))
      return httpx.Response(200, json=self.get(path))
    if method == "PUT":
      expected = request.headers.get("if-match")
      if expected is not None and expected != self.etag(path):
        return httpx.Response(412, headers={"ETag": self.etag(path)}, json={"error": "ETag mismatch"})
      self.set(path, body)
      return httpx.Response(200, json=body)
    if method == "POST":
      key = self.push_id()
      self.set(f"{path}/{key}", body)
      return httpx.Response(200, json={"name": key})
    if method == "PATCH":
      for key, value in (body or {}).items():
        self.set(f"{path}/{key}", value)
      return httpx.Response(200, json=body)
    if method == "DELETE":
      self.set(path, None)
      return httpx.Response(200, json=None)
    return httpx.Response(405)


@pytest.fixture
def anyio_backend():
  return "asyncio"


@pytest.fixture
def db() -> FakeDatabase:
  return FakeDatabase()


@pytest.fixture
def settings():
  return get_settings()


@pytest.fixture
def http_client(db: FakeDatabase) -> httpx.AsyncClient:
  return httpx.AsyncClient(transport=httpx.MockTransport(db.handler))


@pytest.fixture
def client(http_client: httpx.AsyncClient):
  app = create_app(http_client)
  with TestClient(app) as test_client:
    yield test_client


def add_account(db: FakeDatabase, uid: str, account_type: str, username: Optional[str] = None, **extra) -> Identity:
  record = {"username": username or uid.title(), "accountType": account_type, **extra}
  db.set(f"accounts/{uid}", record)
  return Identity(uid=uid, role=account_type, name=record["username"], email=extra.get("email"))


def auth_headers(uid: str, role: Optional[str] = None) -> Dict[str, str]:
  token = create_access_token({"sub": uid, "role": role}, get_settings())
  return {"Authorization": f"Bearer {token}"}


def add_property(db: FakeDatabase, prop_id: str, landlord_id: str = "lord", **fields) -> dict:
  record = {
    "name": f"Property {prop_id}",
    "city": "Douala",
    "location": "Douala",
    "price": 50000000,
    "propertyType": "house",
    "listingType": "sale",
    "landlordId": landlord_id,
    "landlordName": landlord_id.title(),
    "status": "listed",
    "isVerified": False,
    "verificationRequested": False,
    "verificationStatus": "none",
    "createdAt": 1700000000000,
    "updatedAt": 1700000000000,
    **fields,
  }
  db.set(f"properties/{prop_id}", record)
  return record


MOBILE_MONEY = {"method": "mtn", "phone": "+237 650 000 123"}


@pytest.fixture
def people(db: FakeDatabase) -> Dict[str, Dict[str, str]]:
  """Seed one account per role and return ready-to-use auth headers."""
  roles = {
    "admin": "admin",
    "lord": "landlord",
    "other_lord": "landlord",
    "tina": "tenant",
    "council": "council",
  }
  for uid, role in roles.items():
    add_account(db, uid, role, email=f"{uid}@example.cm")
  return {uid: auth_headers(uid, role) for uid, role in roles.items()}
