import json
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple

import httpx
from fastapi import Request, status

from .errors import MarketplaceError, PermissionDenied, StaleRecord, StoreUnavailable, Timeout
from .logging import get_logger
from .settings import Settings

logger = get_logger("firebase")

FORBIDDEN_KEY_CHARS = set(".$#[]/")
MAX_KEY_BYTES = 768


def get_client(request: Request) -> httpx.AsyncClient:
  return request.app.state.http_client


def build_firebase_url(settings: Settings, resource: str, record_id: Optional[str] = None) -> str:
  if not settings.firebase_database_url:
    raise MarketplaceError("Database not configured.")
  base = str(settings.firebase_database_url).rstrip("/")
  path = f"{base}/{resource.strip('/')}{f'/{record_id}' if record_id else ''}.json"
  if settings.firebase_database_secret:
    sep = "&" if "?" in path else "?"
    return f"{path}{sep}auth={settings.firebase_database_secret}"
  return path


def is_valid_key(key: Optional[str]) -> bool:
  if not key or not key.strip():
    return False
  if any(char in FORBIDDEN_KEY_CHARS for char in key):
    return False
  return len(key.encode("utf-8")) <= MAX_KEY_BYTES


def _raise_for_status(response: httpx.Response, resource: str) -> None:
  if response.status_code < 400:
    return
  if response.status_code in (status.HTTP_401_UNAUTHORIZED, status.HTTP_403_FORBIDDEN):
    raise PermissionDenied(f"Database refused access to {resource}.")
  if response.status_code == status.HTTP_412_PRECONDITION_FAILED:
    raise StaleRecord(f"{resource} changed since it was read.")
  raise StoreUnavailable(f"Database error {response.status_code}: {response.text}")


async def _send(
  client: httpx.AsyncClient,
  settings: Settings,
  resource: str,
  method: str,
  record_id: Optional[str] = None,
  body: Optional[Any] = None,
  headers: Optional[Dict[str, str]] = None,
) -> httpx.Response:
  url = build_firebase_url(settings, resource, record_id)
  try:
    response = await client.request(method, url, json=body, headers=headers, timeout=settings.firebase_timeout_seconds)
  except httpx.TimeoutException as exc:
    logger.warning("%s %s timed out", method, resource)
    raise Timeout() from exc
  except httpx.HTTPError as exc:
    logger.warning("%s %s failed: %s", method, resource, exc)
    raise StoreUnavailable() from exc
  _raise_for_status(response, resource)
  return response


def _payload(response: httpx.Response) -> Any:
  if response.status_code == status.HTTP_204_NO_CONTENT or not response.text:
    return None
  return response.json()


async def firebase_request(
  client: httpx.AsyncClient,
  settings: Settings,
  resource: str,
  method: str = "GET",
  record_id: Optional[str] = None,
  body: Optional[Any] = None,
) -> Tuple[int, Any]:
  response = await _send(client, settings, resource, method, record_id, body)
  return response.status_code, _payload(response)


async def firebase_read_versioned(
  client: httpx.AsyncClient,
  settings: Settings,
  resource: str,
  record_id: str,
) -> Tuple[Any, Optional[str]]:
  """Point read that also returns the record's ETag."""
  response = await _send(client, settings, resource, "GET", record_id, headers={"X-Firebase-ETag": "true"})
  return _payload(response), response.headers.get("ETag")


async def firebase_replace_if_match(
  client: httpx.AsyncClient,
  settings: Settings,
  resource: str,
  record_id: str,
  body: Any,
  etag: Optional[str],
) -> None:
  """Replace the record only if nobody wrote it since `etag` was read.

  Raises StaleRecord when the database answers 412.
  """
  headers = {"if-match": etag} if etag else None
  await _send(client, settings, resource, "PUT", record_id, body, headers=headers)


def _split_path(path: str) -> List[str]:
  return [part for part in (path or "").split("/") if part]


def _set_path(tree: Any, parts: List[str], value: Any) -> Any:
  """Return a copy of `tree` with `value` stored at `parts`.

  A None value deletes the node; containers left empty collapse to None the
  way the database drops empty objects.
  """
  if not parts:
    return value
  node = dict(tree) if isinstance(tree, dict) else {}
  head, rest = parts[0], parts[1:]
  child = _set_path(node.get(head), rest, value)
  if child is None or child == {}:
    node.pop(head, None)
  else:
    node[head] = child
  return node or None


def apply_stream_event(snapshot: Any, event: str, payload: Dict[str, Any]) -> Any:
  parts = _split_path(payload.get("path", "/"))
  data = payload.get("data")
  if event == "put":
    return _set_path(snapshot, parts, data)
  if event == "patch":
    for key, value in (data or {}).items():
      snapshot = _set_path(snapshot, parts + _split_path(key), value)
    return snapshot
  return snapshot


async def iter_sse(lines: AsyncIterator[str]) -> AsyncIterator[Tuple[str, str]]:
  event, data = None, []
  async for line in lines:
    if not line:
      if event is not None:
        yield event, "\n".join(data)
      event, data = None, []
      continue
    if line.startswith(":"):
      continue
    field, _, value = line.partition(":")
    value = value[1:] if value.startswith(" ") else value
    if field == "event":
      event = value
    elif field == "data":
      data.append(value)
  if event is not None:
    yield event, "\n".join(data)


async def firebase_stream(
  client: httpx.AsyncClient,
  settings: Settings,
  resource: str,
) -> AsyncIterator[Any]:
  """Follow a subtree and yield its full snapshot after every change."""
  url = build_firebase_url(settings, resource)
  timeout = httpx.Timeout(settings.firebase_timeout_seconds, read=None)
  snapshot: Any = None
  try:
    async with client.stream(
      "GET", url, headers={"Accept": "text/event-stream"}, timeout=timeout, follow_redirects=True
    ) as response:
      if response.status_code >= 400:
        await response.aread()
      _raise_for_status(response, resource)
      async for event, raw in iter_sse(response.aiter_lines()):
        if event == "keep-alive":
          continue
        if event in ("cancel", "auth_revoked"):
          raise PermissionDenied(f"Subscription to {resource} was cancelled by the database.")
        if event not in ("put", "patch"):
          continue
        payload = json.loads(raw) if raw and raw != "null" else {}
        snapshot = apply_stream_event(snapshot, event, payload)
        yield snapshot
  except httpx.TimeoutException as exc:
    raise Timeout() from exc
  except httpx.HTTPError as exc:
    logger.warning("stream %s failed: %s", resource, exc)
    raise StoreUnavailable() from exc
