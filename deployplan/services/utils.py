from __future__ import annotations
import logging
import os

FALLBACK_LOCATION = "eastus2"

def get_allowed_origins():
    raw = os.getenv("CORS_ALLOW_ORIGINS", "*")
    if raw.strip() == "*":
        return ["*"]
    return [x.strip() for x in raw.split(",") if x.strip()]

def get_default_location() -> str:
    return os.getenv("AZURE_LOCATION") or FALLBACK_LOCATION

def configure_logging() -> None:
    level = os.getenv("LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
