"""Delivery collector FastAPI application entry point.

Run with:
    uvicorn src.delivery_collector.main:app --port 8000
"""
import os

from fastapi import FastAPI

from . import __version__
from .api.routes import router as api_router
from .cli import setup_logging


def create_app() -> FastAPI:
    """Build the app with the collection and stats routes mounted."""
    app = FastAPI(
        title="Delivery Stats Collector API",
        version=__version__,
        description="Trigger Grab/GoJek stats collection and read merged daily records",
    )
    app.include_router(api_router)
    return app


setup_logging(verbose=os.getenv("COLLECTOR_LOG_LEVEL", "").upper() == "DEBUG")

app = create_app()
