from __future__ import annotations

import logging
from typing import Any, Dict

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .maintenance.api import router as pm_router
from .settings import get_settings

logger = logging.getLogger(__name__)

app = FastAPI(title="CMMS - Preventive Maintenance Engine")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(pm_router)
logger.info("Preventive maintenance router loaded")


@app.get("/health")
def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.get("/settings")
def settings() -> Dict[str, Any]:
    """Effective engine settings, without the database URL."""
    values = get_settings().to_dict()
    values.pop("database_url", None)
    return values
