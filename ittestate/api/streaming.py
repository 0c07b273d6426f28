import json
from contextlib import aclosing
from typing import Any, AsyncIterator

from fastapi.encoders import jsonable_encoder
from fastapi.responses import StreamingResponse

from ..core.errors import MarketplaceError
from ..core.logging import get_logger

logger = get_logger("streams")


def format_event(event: str, data: Any) -> str:
  return f"event: {event}\ndata: {json.dumps(jsonable_encoder(data))}\n\n"


async def sse_events(snapshots: AsyncIterator[Any]) -> AsyncIterator[str]:
  """Relay every snapshot as an SSE event and release the subscription on exit.

  A failing subscription ends with one `error` event; there is no retry.
  """
  async with aclosing(snapshots) as stream:
    try:
      async for snapshot in stream:
        yield format_event("snapshot", snapshot)
    except MarketplaceError as exc:
      logger.warning("subscription ended: %s", exc.detail)
      yield format_event("error", {"status": exc.status_code, "detail": exc.detail})


def sse_response(snapshots: AsyncIterator[Any]) -> StreamingResponse:
  return StreamingResponse(
    sse_events(snapshots),
    media_type="text/event-stream",
    headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
  )
