# -*- coding: utf-8 -*-
"""Domain records shared by the codec, the stores and the facade."""
from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from .errors import InvalidInputError


class SubscriptionTier(str, Enum):
    FREE = "free"
    PRO = "pro"
    PREMIUM = "premium"


# ---------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------

def utcnow() -> datetime:
    return datetime.now(timezone.utc)

def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO timestamp (``Z`` suffix allowed); naive values are UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        ts = value
    else:
        ts = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts

def parse_date(value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError as exc:
        raise InvalidInputError(f"Invalid date: {value!r}") from exc

def _iso(ts: Optional[datetime]) -> Optional[str]:
    return ts.isoformat() if ts is not None else None

def normalize_labels(values: Optional[Iterable[str]]) -> List[str]:
    """Strip tags/emotions, drop blanks and duplicates, keep first-seen order."""
    if not values:
        return []
    if isinstance(values, str):
        raise InvalidInputError("Labels must be a sequence of strings, not a string")
    cleaned = (str(v).strip() for v in values)
    return list(dict.fromkeys(v for v in cleaned if v))


# ---------------------------------------------------------------------
# Entries
# ---------------------------------------------------------------------

@dataclass
class Entry:
    """One journal record in plaintext form."""

    id: str
    user_id: str
    occurred_on: date
    content: str
    interpretation: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    emotions: List[str] = field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def validate(self) -> None:
        if not self.user_id:
            raise InvalidInputError("Entry owner is required")
        if not self.content or not self.content.strip():
            raise InvalidInputError("Dream content is required")

    def to_dict(self) -> Dict[str, Any]:
        """Plain JSON form used by the on-device store."""
        return {
            "id": self.id,
            "user_id": self.user_id,
            "occurred_on": self.occurred_on.isoformat(),
            "content": self.content,
            "interpretation": self.interpretation,
            "tags": list(self.tags),
            "emotions": list(self.emotions),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Entry":
        return cls(
            id=str(data["id"]),
            user_id=str(data["user_id"]),
            occurred_on=parse_date(data["occurred_on"]),
            content=data["content"],
            interpretation=data.get("interpretation") or None,
            tags=list(data.get("tags") or []),
            emotions=list(data.get("emotions") or []),
            created_at=parse_timestamp(data.get("created_at")),
            updated_at=parse_timestamp(data.get("updated_at")),
        )


@dataclass
class EntryUpdate:
    """Partial update; ``None`` means "leave the stored value alone"."""

    occurred_on: Optional[date] = None
    content: Optional[str] = None
    interpretation: Optional[str] = None
    tags: Optional[List[str]] = None
    emotions: Optional[List[str]] = None

    def fields(self) -> Dict[str, Any]:
        """Return only the supplied fields, validated and normalized."""
        out: Dict[str, Any] = {}
        if self.occurred_on is not None:
            out["occurred_on"] = parse_date(self.occurred_on)
        if self.content is not None:
            if not self.content.strip():
                raise InvalidInputError("Dream content cannot be empty")
            out["content"] = self.content
        if self.interpretation is not None:
            if not self.interpretation.strip():
                raise InvalidInputError("Interpretation cannot be empty")
            out["interpretation"] = self.interpretation
        if self.tags is not None:
            out["tags"] = normalize_labels(self.tags)
        if self.emotions is not None:
            out["emotions"] = normalize_labels(self.emotions)
        return out

    def is_empty(self) -> bool:
        return not self.fields()


@dataclass
class EncryptedEntry:
    """Wire form of an Entry: sensitive fields hold envelopes, metadata stays clear."""

    id: str
    user_id: str
    occurred_on: date
    content: Optional[str]
    interpretation: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    emotions: List[str] = field(default_factory=list)
    is_deleted: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def to_row(self) -> Dict[str, Any]:
        """Column mapping for the remote ``dream_entries`` relation."""
        row: Dict[str, Any] = {
            "id": self.id,
            "user_id": self.user_id,
            "dream_date": self.occurred_on.isoformat(),
            "dream_text": self.content,
            "interpretation": self.interpretation,
            "tags": list(self.tags),
            "emotions": list(self.emotions),
            "is_deleted": self.is_deleted,
        }
        if self.created_at is not None:
            row["created_at"] = _iso(self.created_at)
        if self.updated_at is not None:
            row["updated_at"] = _iso(self.updated_at)
        return row

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "EncryptedEntry":
        return cls(
            id=str(row["id"]),
            user_id=str(row["user_id"]),
            occurred_on=parse_date(row["dream_date"]),
            content=row.get("dream_text"),
            interpretation=row.get("interpretation") or None,
            tags=list(row.get("tags") or []),
            emotions=list(row.get("emotions") or []),
            is_deleted=bool(row.get("is_deleted", False)),
            created_at=parse_timestamp(row.get("created_at")),
            updated_at=parse_timestamp(row.get("updated_at")),
        )


# ---------------------------------------------------------------------
# Users / keys
# ---------------------------------------------------------------------

@dataclass
class User:
    id: str
    email: str
    external_id: Optional[str] = None
    subscription_tier: SubscriptionTier = SubscriptionTier.FREE
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "email": self.email,
            "external_id": self.external_id,
            "subscription_tier": self.subscription_tier.value,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "User":
        return cls(
            id=str(data["id"]),
            email=data.get("email") or "",
            external_id=data.get("external_id"),
            subscription_tier=SubscriptionTier(data.get("subscription_tier") or "free"),
            created_at=parse_timestamp(data.get("created_at")),
            updated_at=parse_timestamp(data.get("updated_at")),
        )

    def merged(self, changes: Dict[str, Any]) -> "User":
        """Apply profile *changes* (email, external_id, subscription_tier)."""
        allowed = {"email", "external_id", "subscription_tier"}
        unknown = set(changes) - allowed
        if unknown:
            raise InvalidInputError(f"Cannot update user fields: {sorted(unknown)}")
        updates = dict(changes)
        if "subscription_tier" in updates:
            updates["subscription_tier"] = SubscriptionTier(updates["subscription_tier"])
        return replace(self, **updates)


@dataclass
class KeyInfo:
    """Salt needed to re-derive a user's key. The key itself is never stored."""

    user_id: str
    salt: str
    derived_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {"user_id": self.user_id, "salt": self.salt, "derived_at": _iso(self.derived_at)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "KeyInfo":
        return cls(
            user_id=str(data["user_id"]),
            salt=data["salt"],
            derived_at=parse_timestamp(data.get("derived_at")) or utcnow(),
        )


# ---------------------------------------------------------------------
# Aggregates
# ---------------------------------------------------------------------

@dataclass
class EntryStats:
    total: int = 0
    with_interpretation: int = 0
    this_month: int = 0
    this_week: int = 0
    oldest: Optional[date] = None
    newest: Optional[date] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "EntryStats":
        """Build from the remote ``get_user_stats`` result."""
        oldest = row.get("oldest_dream")
        newest = row.get("newest_dream")
        return cls(
            total=int(row.get("total_dreams") or 0),
            with_interpretation=int(row.get("dreams_with_interpretation") or 0),
            this_month=int(row.get("dreams_this_month") or 0),
            this_week=int(row.get("dreams_this_week") or 0),
            oldest=parse_date(oldest) if oldest else None,
            newest=parse_date(newest) if newest else None,
        )


def month_start(now: datetime) -> datetime:
    return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)

def week_start(now: datetime) -> datetime:
    """Midnight of the most recent Sunday."""
    days_since_sunday = (now.weekday() + 1) % 7
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    return midnight - timedelta(days=days_since_sunday)

def compute_stats(entries: List[Entry], now: Optional[datetime] = None) -> EntryStats:
    """Aggregate counts over plaintext entries (local store + tests)."""
    now = now or utcnow()
    if not entries:
        return EntryStats()
    m_start, w_start = month_start(now), week_start(now)
    created = [e.created_at for e in entries if e.created_at is not None]
    dates = [e.occurred_on for e in entries]
    return EntryStats(
        total=len(entries),
        with_interpretation=sum(1 for e in entries if e.interpretation),
        this_month=sum(1 for ts in created if ts >= m_start),
        this_week=sum(1 for ts in created if ts >= w_start),
        oldest=min(dates),
        newest=max(dates),
    )


@dataclass
class DreamPatterns:
    total: int = 0
    emotion_counts: Dict[str, int] = field(default_factory=dict)
    tag_counts: Dict[str, int] = field(default_factory=dict)
    monthly_counts: Dict[str, int] = field(default_factory=dict)
    most_common_emotion: Optional[str] = None
    most_common_tag: Optional[str] = None


def compute_patterns(entries: List[Entry]) -> DreamPatterns:
    emotions: Counter = Counter()
    tags: Counter = Counter()
    months: Counter = Counter()
    for e in entries:
        emotions.update(e.emotions)
        tags.update(e.tags)
        if e.created_at is not None:
            months[e.created_at.strftime("%Y-%m")] += 1
    return DreamPatterns(
        total=len(entries),
        emotion_counts=dict(emotions),
        tag_counts=dict(tags),
        monthly_counts=dict(sorted(months.items())),
        most_common_emotion=emotions.most_common(1)[0][0] if emotions else None,
        most_common_tag=tags.most_common(1)[0][0] if tags else None,
    )
