"""
Kiosk Ads Campaign Engine - FastAPI Backend

Serves:
- GET /healthz                       : liveness/readiness
- POST /api/scheduler/trigger        : Manual reconciliation pass
- GET /api/scheduler/status          : Scheduler and clock state
- POST /api/pricing/quote            : Volume discount quote for a kiosk selection
- POST /api/campaigns                : Create a draft campaign
- POST /api/campaigns/{id}/status    : User/admin status change
- POST /api/discounts, GET /api/discounts : Discount administration
"""

import logging
import os
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from kioskads import __version__
from kioskads.campaign_engine import CampaignEngine, build_engine
from kioskads.campaign_engine.routes import router as campaign_engine_router

# --- Env / Config ---
load_dotenv()

APP_HOST = os.getenv("APP_HOST", "0.0.0.0")
APP_PORT = int(os.getenv("PORT", os.getenv("APP_PORT", "8000")))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

logging.basicConfig(level=getattr(logging, LOG_LEVEL.upper(), logging.INFO))
logger = logging.getLogger("kioskads")


def create_app(engine: Optional[CampaignEngine] = None) -> FastAPI:
    """Build the API. An engine passed in is used as-is and never started or shut down here."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = False
        if getattr(app.state, "campaign_engine", None) is None:
            app.state.campaign_engine = build_engine()
            owned = True
            if app.state.campaign_engine.config.scheduler_enabled:
                app.state.campaign_engine.scheduler.start()
        try:
            yield
        finally:
            if owned:
                app.state.campaign_engine.shutdown()
                app.state.campaign_engine = None

    app = FastAPI(title="Kiosk Ads Campaign Engine", version=__version__, lifespan=lifespan)
    app.state.campaign_engine = engine
    app.include_router(campaign_engine_router)

    @app.get("/healthz", response_class=JSONResponse)
    async def healthz(request: Request) -> JSONResponse:
        engine = getattr(request.app.state, "campaign_engine", None)
        checks: Dict[str, Any] = {
            "status": "ok" if engine is not None else "starting",
            "version": __version__,
        }
        if engine is not None:
            checks["scheduler_running"] = engine.scheduler.is_running()
            checks["reference_timezone"] = engine.config.reference_timezone
        return JSONResponse(checks, status_code=200 if engine is not None else 503)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "kioskads.main:app",
        host=APP_HOST,
        port=APP_PORT,
        reload=False,
        log_level=LOG_LEVEL.lower()
    )
