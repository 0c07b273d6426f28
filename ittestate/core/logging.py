"""Logging helpers shared by the API, services and scheduler."""

import logging
from typing import Optional

_NAMESPACE = "ittestate"


def configure_logging(level: Optional[str] = None) -> logging.Logger:
  """Return the service logger, attaching a single-line stream handler once.

  Records read `timestamp LEVEL logger message` so they stay greppable in
  container logs.
  """

  logger = logging.getLogger(_NAMESPACE)
  if level:
    logger.setLevel(level.upper())
  if logger.handlers:
    return logger

  handler = logging.StreamHandler()
  handler.setFormatter(
    logging.Formatter(
      fmt="%(asctime)s %(levelname)s %(name)s %(message)s",
      datefmt="%Y-%m-%dT%H:%M:%S",
    )
  )
  logger.addHandler(handler)
  if not level:
    logger.setLevel(logging.INFO)
  logger.propagate = False
  return logger


def get_logger(child: Optional[str] = None) -> logging.Logger:
  base = configure_logging()
  if child:
    return base.getChild(child)
  return base
