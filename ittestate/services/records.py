import random
import string
import time
from typing import Any, Dict, Iterator, Optional, Tuple

_BASE36 = string.digits + string.ascii_lowercase


def now_ms() -> int:
  return int(time.time() * 1000)


def next_stamp(previous: Optional[Any]) -> int:
  """Current epoch ms, bumped past `previous` so stamps never go backwards."""
  current = now_ms()
  try:
    previous_value = int(previous) if previous is not None else None
  except (TypeError, ValueError):
    previous_value = None
  if previous_value is not None and current <= previous_value:
    return previous_value + 1
  return current


def generate_id(prefix: str) -> str:
  suffix = "".join(random.choice(_BASE36) for _ in range(6))
  return f"{prefix}_{now_ms()}_{suffix}"


def to_clean_string(value: Optional[Any]) -> Optional[str]:
  if value is None:
    return None
  stripped = str(value).strip()
  return stripped or None


def snapshot_items(snapshot: Any) -> Iterator[Tuple[str, Dict[str, Any]]]:
  if not isinstance(snapshot, dict):
    return
  for key, raw in snapshot.items():
    if isinstance(raw, dict):
      yield key, raw
