"""Centralized logging service using loguru."""

import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from loguru import logger

from app.config import settings

# Remove default handler
logger.remove()

# Add console handler with color
logger.add(
    sys.stderr,
    format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>",
    level=settings.app_log_level.upper(),
    colorize=True,
)

if settings.log_to_file:
    LOG_DIR = Path(settings.log_dir)
    LOG_DIR.mkdir(parents=True, exist_ok=True)
    logger.add(
        LOG_DIR / "search_{time:YYYY-MM-DD}.log",
        format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}",
        level="DEBUG",
        rotation="00:00",  # New file at midnight
        retention="7 days",
        compression="zip",
    )

# Reduce noise from framework/network libraries
for logger_name in (
    "uvicorn",
    "uvicorn.error",
    "uvicorn.access",
    "fastapi",
    "httpx",
    "httpcore",
    "hpack",
    "openai._base_client",
    "asyncio",
):
    logging.getLogger(logger_name).setLevel(settings.noisy_log_level.upper())


def log_llm_call(
    model: str,
    caller: str,
    input_tokens: int = 0,
    output_tokens: int = 0,
    duration_ms: int = 0,
    status: str = "success",
    error: Optional[str] = None,
) -> None:
    """Log a text-completion call."""
    call_data = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "model": model,
        "caller": caller,
        "input_tokens": input_tokens,
        "output_tokens": output_tokens,
        "total_tokens": input_tokens + output_tokens,
        "duration_ms": duration_ms,
        "status": status,
        "error": error,
    }
    if error:
        logger.error(f"LLM_CALL_FAILED: {call_data}")
    else:
        logger.info(f"LLM_CALL: {call_data}")


def log_search_step(
    request_id: str,
    iteration: int,
    state: str,
    data: Optional[dict] = None,
) -> None:
    """Log one state transition of the search loop."""
    step_data = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "request_id": request_id,
        "iteration": iteration,
        "state": state,
        "data": data,
    }
    logger.debug(f"SEARCH_STEP: {step_data}")


def log_event(
    event_type: str,
    message: str,
    **kwargs,
) -> None:
    """Log a generic event."""
    event_data = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "event_type": event_type,
        "message": message,
        **kwargs,
    }
    logger.info(f"EVENT: {event_data}")


def log_request_metrics(
    request_id: str,
    time_taken: float,
    iterations: int,
    credits_used: int,
    num_results: int,
    async_scraping: bool = False,
    status: str = "success",
) -> None:
    """Log timing and billing figures for one finished search request."""
    metrics = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "request_id": request_id,
        "time_taken": round(time_taken, 3),
        "iterations": iterations,
        "credits_used": credits_used,
        "num_results": num_results,
        "async_scraping": async_scraping,
        "status": status,
    }
    if status != "success":
        logger.warning(f"SEARCH_METRICS: {metrics}")
    else:
        logger.info(f"SEARCH_METRICS: {metrics}")
