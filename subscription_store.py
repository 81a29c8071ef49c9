"""
Storage and business rules for tracked subscriptions.

- Every operation takes a SQLAlchemy engine and opens its own connection for
  the duration of one logical operation.
- Partial updates go through SubscriptionPatch so that only supplied,
  correctly-typed fields are written.
- monthly_cost() normalizes yearly prices to a per-month figure.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, fields
from datetime import datetime, timezone

from sqlalchemy import text

log = logging.getLogger(__name__)

TABLE_SUB = "subscriptions"
HIGH_COST_THRESHOLD = 100.0
MAX_ID = 2**63 - 1

SEED_ROWS = (
    {"name": "Netflix", "price": 15.99, "cycle": "monthly", "start_date": "2023-01-01"},
    {"name": "Spotify", "price": 9.99, "cycle": "monthly", "start_date": "2023-02-01"},
    {"name": "iCloud", "price": 0.99, "cycle": "monthly", "start_date": "2023-03-01"},
)


# -----------------------------
# Errors
# -----------------------------

class SubscriptionError(Exception):
    """Base error; the message is safe to show to the caller."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidIdError(SubscriptionError):
    def __init__(self, message: str = "Invalid subscription id"):
        super().__init__(message)


class ValidationError(SubscriptionError):
    pass


class NotFoundError(SubscriptionError):
    def __init__(self, message: str = "Subscription not found"):
        super().__init__(message)


# -----------------------------
# Coercion helpers
# -----------------------------

def parse_subscription_id(raw) -> int:
    """Parse a path identifier; it must be a positive whole number that fits a 64-bit column."""
    value = str(raw).strip()
    if not (value.isascii() and value.isdigit()):
        raise InvalidIdError()
    sub_id = int(value)
    if not 0 < sub_id <= MAX_ID:
        raise InvalidIdError()
    return sub_id


def _coerce_price(raw) -> float:
    if isinstance(raw, bool):
        raise ValidationError("Price must be a number.")
    try:
        price = float(raw)
    except (TypeError, ValueError):
        raise ValidationError("Price must be a number.") from None
    if not math.isfinite(price) or price < 0:
        raise ValidationError("Price must be a non-negative number.")
    return price


def _coerce_start_date(raw) -> str:
    """Return the start date as an ISO date-time string at midnight."""
    if not isinstance(raw, str):
        raise ValidationError("startDate must be a date string.")
    value = raw.strip()
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        raise ValidationError("startDate must be a valid date (YYYY-MM-DD).") from None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return datetime(parsed.year, parsed.month, parsed.day).isoformat()


def _has_text(value) -> bool:
    return isinstance(value, str) and bool(value.strip())


def _now() -> str:
    # always UTC: created_at is ordered as text
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


# -----------------------------
# Partial updates
# -----------------------------

@dataclass(frozen=True)
class SubscriptionPatch:
    """Set of optional fields for a partial update; None means "not supplied"."""

    name: str | None = None
    price: float | None = None
    cycle: str | None = None
    start_date: str | None = None
    active: bool | None = None

    @classmethod
    def from_json(cls, body) -> "SubscriptionPatch":
        """Keep only recognized, correctly-typed keys from a request body."""
        if not isinstance(body, dict):
            return cls()
        values = {}
        if _has_text(body.get("name")):
            values["name"] = body["name"]
        if body.get("price") is not None:
            values["price"] = _coerce_price(body["price"])
        if _has_text(body.get("cycle")):
            values["cycle"] = body["cycle"]
        if isinstance(body.get("startDate"), str):
            values["start_date"] = _coerce_start_date(body["startDate"])
        if isinstance(body.get("active"), bool):
            values["active"] = body["active"]
        return cls(**values)

    def changes(self) -> dict:
        """Column -> value for every supplied field."""
        out = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if value is not None:
                out[f.name] = int(value) if f.name == "active" else value
        return out

    def is_empty(self) -> bool:
        return not self.changes()


# -----------------------------
# Schema & serialization
# -----------------------------

def ensure_schema(engine) -> None:
    with engine.begin() as conn:
        conn.execute(text(f"""
            CREATE TABLE IF NOT EXISTS {TABLE_SUB} (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL,
                price REAL NOT NULL,
                cycle TEXT NOT NULL,
                start_date TEXT NOT NULL,
                active INTEGER NOT NULL DEFAULT 1,
                created_at TEXT NOT NULL
            )
        """))
        conn.execute(text(
            f"CREATE INDEX IF NOT EXISTS ix_{TABLE_SUB}_created_at ON {TABLE_SUB} (created_at)"
        ))


def _to_record(row) -> dict:
    return {
        "id": int(row["id"]),
        "name": row["name"],
        "price": float(row["price"]),
        "cycle": row["cycle"],
        "startDate": row["start_date"],
        "active": bool(row["active"]),
        "createdAt": row["created_at"],
    }


def _fetch(conn, sub_id: int):
    return conn.execute(
        text(f"""
            SELECT id, name, price, cycle, start_date, active, created_at
            FROM {TABLE_SUB}
            WHERE id = :id
        """),
        {"id": sub_id},
    ).mappings().first()


# -----------------------------
# CRUD
# -----------------------------

def list_subscriptions(engine) -> list[dict]:
    """All subscriptions, newest first."""
    with engine.connect() as conn:
        rows = conn.execute(text(f"""
            SELECT id, name, price, cycle, start_date, active, created_at
            FROM {TABLE_SUB}
            ORDER BY created_at DESC, id DESC
        """)).mappings().all()
    return [_to_record(r) for r in rows]


def create_subscription(engine, name, price, cycle, start_date) -> dict:
    # Truthiness check: a price of 0 is rejected along with missing fields.
    if not name or not price or not cycle or not start_date:
        raise ValidationError("Missing required fields: name, price, cycle, startDate")
    if not isinstance(name, str) or not isinstance(cycle, str):
        raise ValidationError("name and cycle must be text.")

    params = {
        "name": name,
        "price": _coerce_price(price),
        "cycle": cycle,
        "start_date": _coerce_start_date(start_date),
        "created_at": _now(),
    }
    with engine.begin() as conn:
        result = conn.execute(
            text(f"""
                INSERT INTO {TABLE_SUB} (name, price, cycle, start_date, active, created_at)
                VALUES (:name, :price, :cycle, :start_date, 1, :created_at)
            """),
            params,
        )
        row = _fetch(conn, result.lastrowid)
    log.debug("inserted subscription %s", row["id"])
    return _to_record(row)


def update_subscription(engine, sub_id: int, patch: SubscriptionPatch) -> dict:
    changes = patch.changes()
    if not changes:
        raise ValidationError("No updatable fields provided.")

    assignments = ", ".join(f"{col} = :{col}" for col in changes)
    with engine.begin() as conn:
        result = conn.execute(
            text(f"UPDATE {TABLE_SUB} SET {assignments} WHERE id = :id"),
            {**changes, "id": sub_id},
        )
        if not result.rowcount:
            raise NotFoundError()
        row = _fetch(conn, sub_id)
    log.debug("updated subscription %s: %s", sub_id, sorted(changes))
    return _to_record(row)


def delete_subscription(engine, sub_id: int) -> dict:
    with engine.begin() as conn:
        row = _fetch(conn, sub_id)
        if row is None:
            raise NotFoundError()
        conn.execute(text(f"DELETE FROM {TABLE_SUB} WHERE id = :id"), {"id": sub_id})
    log.debug("deleted subscription %s", sub_id)
    return _to_record(row)


def seed_subscriptions(engine) -> list[dict]:
    return [
        create_subscription(engine, r["name"], r["price"], r["cycle"], r["start_date"])
        for r in SEED_ROWS
    ]


# -----------------------------
# Monthly cost
# -----------------------------

def monthly_equivalent(price, cycle) -> float:
    price = float(price or 0.0)
    if str(cycle or "").lower() == "yearly":
        return price / 12
    # anything that is not yearly counts as monthly, unknown values included
    return price


def monthly_cost(subscriptions) -> float:
    return sum(monthly_equivalent(s.get("price"), s.get("cycle")) for s in subscriptions)


def cost_class(total: float) -> str:
    return "high" if total > HIGH_COST_THRESHOLD else "normal"
