from typing import Optional

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .api import accounts, auth, chats, properties, transactions, verification
from .core.logging import configure_logging, get_logger
from .core.settings import get_settings
from .cron.scheduler import create_scheduler
from .services.identity_service import add_default_admin


def create_app(http_client: Optional[httpx.AsyncClient] = None) -> FastAPI:
  settings = get_settings()
  configure_logging(settings.log_level)
  logger = get_logger("app")
  app = FastAPI(title="ITT Real Estate API", version="1.0.0")

  app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins or ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
  )

  http_client = http_client or httpx.AsyncClient(timeout=settings.firebase_timeout_seconds)
  app.state.http_client = http_client
  app.state.scheduler = None

  @app.on_event("startup")
  async def startup_event():
    await add_default_admin(http_client, settings)
    scheduler = create_scheduler(settings, http_client)
    if scheduler:
      scheduler.start()
      app.state.scheduler = scheduler
      logger.info("verification digest scheduled (%s)", settings.digest_cron_tz)

  @app.on_event("shutdown")
  async def shutdown_event():
    scheduler = getattr(app.state, "scheduler", None)
    if scheduler:
      scheduler.shutdown(wait=False)
    await http_client.aclose()

  app.include_router(auth.router)
  app.include_router(accounts.router)
  app.include_router(properties.router)
  app.include_router(verification.router)
  app.include_router(chats.router)
  app.include_router(transactions.router)

  @app.get("/api/health")
  async def health():
    return {"status": "ok"}

  return app


app = create_app()


if __name__ == "__main__":  # pragma: no cover
  import uvicorn

  settings = get_settings()
  uvicorn.run("ittestate.main:app", host="0.0.0.0", port=settings.port, reload=True)
