"""Shared data models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional
import uuid

from witnessbox.schemas import FilterMode, MessageRole, ViolationCategory, ViolationStatus


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Student:
    """Whitelisted student and their personal limits."""
    email: str
    name: Optional[str] = None
    is_active: bool = True
    daily_token_limit: Optional[int] = None  # None means unbounded
    monthly_cost_limit: Optional[Decimal] = None
    notes: Optional[str] = None
    created_at: datetime = field(default_factory=_utcnow)


@dataclass
class Settings:
    """Global limits and filter configuration (single row)."""
    global_daily_token_limit: Optional[int] = None
    global_monthly_cost_limit: Optional[Decimal] = None
    content_filter_mode: FilterMode = FilterMode.NORMAL
    alert_email: Optional[str] = None
    updated_at: datetime = field(default_factory=_utcnow)


@dataclass
class UsageEntry:
    """One ledger entry per model invocation. Append-only."""
    student_email: str
    session_id: str
    tokens_used: int
    cost: Decimal
    student_name: Optional[str] = None
    timestamp: datetime = field(default_factory=_utcnow)
    entry_id: str = field(default_factory=lambda: uuid.uuid4().hex)


@dataclass
class ViolationEvent:
    """Audit record of a blocked, flagged or overridden request."""
    student_email: str
    category: ViolationCategory
    detail: str
    session_id: Optional[str] = None
    status: ViolationStatus = ViolationStatus.FLAGGED
    timestamp: datetime = field(default_factory=_utcnow)
    content: Optional[str] = None
    filter_mode: Optional[FilterMode] = None
    bypassed_at: Optional[datetime] = None
    event_id: str = field(default_factory=lambda: uuid.uuid4().hex)


@dataclass
class ChatSession:
    student_email: str
    character_name: str
    situation: str
    student_name: Optional[str] = None
    created_at: datetime = field(default_factory=_utcnow)
    session_id: str = field(default_factory=lambda: uuid.uuid4().hex)


@dataclass
class ChatMessage:
    session_id: str
    role: MessageRole
    content: str
    timestamp: datetime = field(default_factory=_utcnow)
    message_id: str = field(default_factory=lambda: uuid.uuid4().hex)


@dataclass
class AdminToken:
    token: str
    expires_at: datetime
    created_at: datetime = field(default_factory=_utcnow)
