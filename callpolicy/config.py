"""
Runtime settings loaded from the environment (and an optional .env file).
"""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

DEFAULT_AGENT_MODEL = "gpt-4.1-mini"
DEFAULT_BORROWER_MODEL = "gpt-4.1-mini"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

load_dotenv()


class Settings(BaseModel):
    """Process settings. Read once by the CLI and passed down explicitly."""

    openai_api_key: Optional[str] = None
    agent_model: str = DEFAULT_AGENT_MODEL
    borrower_model: str = DEFAULT_BORROWER_MODEL
    agent_temperature: float = Field(default=0.7, ge=0, le=2)
    borrower_temperature: float = Field(default=0.8, ge=0, le=2)
    results_dir: Path = Path("results")
    log_level: str = "INFO"


def load_settings() -> Settings:
    """Build settings from environment variables."""
    return Settings(
        openai_api_key=os.getenv("OPENAI_API_KEY"),
        agent_model=os.getenv("CALLPOLICY_AGENT_MODEL", DEFAULT_AGENT_MODEL),
        borrower_model=os.getenv("CALLPOLICY_BORROWER_MODEL", DEFAULT_BORROWER_MODEL),
        results_dir=Path(os.getenv("CALLPOLICY_RESULTS_DIR", "results")),
        log_level=os.getenv("CALLPOLICY_LOG_LEVEL", "INFO"),
    )


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)


__all__ = ["Settings", "load_settings", "configure_logging"]
