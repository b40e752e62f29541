"""Global configuration for WitnessBox."""

from __future__ import annotations

import copy
import json
import logging
import os
from datetime import datetime, tzinfo
from decimal import Decimal, InvalidOperation
from typing import Dict, Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from witnessbox.schemas import MatchMode


# USD per 1K tokens
DEFAULT_PRICING: Dict[str, Dict[str, Decimal]] = {
    "gpt-4o": {"input": Decimal("0.0025"), "output": Decimal("0.01")},
    "gpt-4o-mini": {"input": Decimal("0.00015"), "output": Decimal("0.0006")},
}

DEFAULT_MODEL = "gpt-4o"
DEFAULT_DB_PATH = "witnessbox.db"
DEFAULT_WORK_TITLE = "The Princess Bride"
DEFAULT_PROFESSOR_NAME = "Professor Chapman"
DEFAULT_ADMIN_PASSWORD = "change-me"

COST_PRECISION = Decimal("0.0001")

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

_pricing: Dict[str, Dict[str, Decimal]] = copy.deepcopy(DEFAULT_PRICING)
_timezone: tzinfo | None = None

logger = logging.getLogger("witnessbox.config")


def _parse_json_env(var_name: str) -> Dict[str, Any] | None:
    value = os.getenv(var_name)
    if not value:
        return None
    try:
        parsed = json.loads(value)
    except json.JSONDecodeError:
        return None
    if not isinstance(parsed, dict):
        return None
    return parsed


def _to_decimal_rates(pricing: Dict[str, Dict[str, Any]]) -> Dict[str, Dict[str, Decimal]]:
    converted: Dict[str, Dict[str, Decimal]] = {}
    for model, rates in pricing.items():
        if not isinstance(rates, dict) or "input" not in rates or "output" not in rates:
            raise ValueError(f"pricing for {model} must include 'input' and 'output'")
        try:
            # str() first so floats from JSON don't carry binary noise
            converted[model] = {
                "input": Decimal(str(rates["input"])),
                "output": Decimal(str(rates["output"])),
            }
        except InvalidOperation as exc:
            raise ValueError(f"pricing for {model} must be numeric") from exc
    return converted


def get_pricing() -> Dict[str, Dict[str, Decimal]]:
    """Return per-1K-token pricing, with optional env override."""
    parsed = _parse_json_env("WITNESSBOX_PRICING_JSON")
    if parsed:
        try:
            return _to_decimal_rates(parsed)
        except ValueError:
            logger.warning("Ignoring malformed WITNESSBOX_PRICING_JSON")
    return _pricing


def set_pricing(pricing: Dict[str, Dict[str, Any]]) -> None:
    """Set pricing at runtime."""
    if not isinstance(pricing, dict) or not pricing:
        raise ValueError("pricing must be a non-empty dict")
    global _pricing
    _pricing = _to_decimal_rates(pricing)


def get_model() -> str:
    return os.getenv("WITNESSBOX_MODEL", DEFAULT_MODEL)


def get_db_path() -> str:
    return os.getenv("WITNESSBOX_DB_PATH", DEFAULT_DB_PATH)


def get_work_title() -> str:
    return os.getenv("WITNESSBOX_WORK_TITLE", DEFAULT_WORK_TITLE)


def get_professor_name() -> str:
    return os.getenv("WITNESSBOX_PROFESSOR_NAME", DEFAULT_PROFESSOR_NAME)


def get_admin_password() -> str:
    password = os.getenv("ADMIN_PASSWORD", "").strip()
    if not password:
        logger.warning("ADMIN_PASSWORD not set; using the development default")
        return DEFAULT_ADMIN_PASSWORD
    return password


def get_match_mode() -> MatchMode:
    """Keyword matching mode for the content classifier."""
    value = os.getenv("WITNESSBOX_MATCH_MODE", MatchMode.SUBSTRING.value)
    try:
        return MatchMode(value.lower())
    except ValueError:
        logger.warning("Unknown WITNESSBOX_MATCH_MODE %r; using substring", value)
        return MatchMode.SUBSTRING


def get_timezone() -> tzinfo:
    """Time zone that defines day and month usage windows."""
    if _timezone is not None:
        return _timezone
    name = os.getenv("WITNESSBOX_TIMEZONE")
    if name:
        try:
            return ZoneInfo(name)
        except ZoneInfoNotFoundError:
            logger.warning("Unknown WITNESSBOX_TIMEZONE %r; using host zone", name)
    return datetime.now().astimezone().tzinfo


def set_timezone(tz: tzinfo | str | None) -> None:
    """Pin the usage-window time zone at runtime (None restores the default)."""
    global _timezone
    _timezone = ZoneInfo(tz) if isinstance(tz, str) else tz


def configure_logging(level: int = logging.INFO) -> logging.Logger:
    """Attach a stream handler to the package logger once."""
    root = logging.getLogger("witnessbox")
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(handler)
    root.setLevel(level)
    return root
