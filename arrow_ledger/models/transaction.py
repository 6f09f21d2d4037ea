"""
Core Data Models for Arrow Ledger

These models define the strict schemas for ledger data.
They are designed to:
1. Enforce type safety at runtime
2. Keep dates anchored at UTC midnight, whatever the input timezone
3. Be serializable for storage and audit snapshots

DESIGN DECISION: `rank` is part of the model but only the reorder flow
and the create flow ever choose its value. Field edits never touch it.
"""

import hashlib
import re
from datetime import date, datetime, time, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StrictBool,
    field_validator,
    model_validator,
)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class TransactionCategory(str, Enum):
    """
    Supported transaction categories.

    DESIGN DECISION: Explicit categories rather than free text keep
    aggregation by category meaningful.
    """
    DURHAM_TRUCK = "Durham Truck"
    CONCORD_TRUCK = "Concord Truck"
    DEPOSIT = "Deposit"
    CREDIT_CARD_CHARGE = "Credit Card Charge"


class ConfirmationField(str, Enum):
    """The two per-role confirmation checkboxes."""
    TAYLOR = "confirmation_taylor"
    DAD = "confirmation_dad"


# =============================================================================
# DATE HANDLING
# =============================================================================

# DD/MM/YYYY, nothing else
_LEDGER_DATE_RE = re.compile(r"^([0-9]{1,2})/([0-9]{1,2})/([0-9]{4})$")


def to_utc_midnight(value: date | datetime) -> datetime:
    """
    Anchor a calendar day at 00:00 UTC.

    Aware datetimes keep the calendar day they carry in their own
    timezone; the time of day is dropped.
    """
    if isinstance(value, datetime):
        value = value.date()
    return datetime.combine(value, time.min, tzinfo=timezone.utc)


def parse_ledger_date(value: str) -> datetime:
    """
    Parse a DD/MM/YYYY wire date to UTC midnight.

    Raises ValueError for any other format or an impossible calendar day.
    """
    if not isinstance(value, str):
        raise ValueError("Date must be a DD/MM/YYYY string")
    match = _LEDGER_DATE_RE.match(value.strip())
    if not match:
        raise ValueError(f"Invalid date format: {value!r} (expected DD/MM/YYYY)")
    day, month, year = (int(part) for part in match.groups())
    try:
        return datetime(year, month, day, tzinfo=timezone.utc)
    except ValueError:
        raise ValueError(f"Invalid calendar date: {value!r}")


def format_ledger_date(value: datetime) -> str:
    """Render a stored date back to DD/MM/YYYY (UTC)."""
    return value.astimezone(timezone.utc).strftime("%d/%m/%Y")


def order_token(ordered_ids: list[UUID]) -> str:
    """Stable fingerprint of a full display order."""
    joined = ",".join(str(tx_id) for tx_id in ordered_ids)
    return hashlib.sha256(joined.encode("utf-8")).hexdigest()


# =============================================================================
# CORE TRANSACTION MODEL
# =============================================================================

class Transaction(BaseModel):
    """
    A single ledger row.

    `rank` defines display position; higher ranks are shown first.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(
        default_factory=uuid4,
        description="Unique transaction identifier"
    )
    date: datetime = Field(
        ...,
        description="Calendar date of the transaction, UTC midnight"
    )
    category: TransactionCategory = Field(
        ...,
        description="Transaction category"
    )
    amount: Decimal = Field(
        ...,
        allow_inf_nan=False,
        description="Signed amount; negative for money out"
    )
    notes: Optional[str] = Field(
        default=None,
        max_length=1000,
        description="Free-text notes"
    )
    confirmation_taylor: bool = Field(
        default=False,
        description="Confirmed by taylor"
    )
    confirmation_dad: bool = Field(
        default=False,
        description="Confirmed by dad"
    )
    rank: int = Field(
        ...,
        description="Display position; unique across the ledger"
    )

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @field_validator('date', mode='before')
    @classmethod
    def normalize_date(cls, v: Any) -> Any:
        if isinstance(v, (date, datetime)):
            return to_utc_midnight(v)
        return v

    @field_validator('date')
    @classmethod
    def ensure_utc_midnight(cls, v: datetime) -> datetime:
        # strings parsed by pydantic land here untouched by the before hook
        if v.tzinfo is None:
            v = v.replace(tzinfo=timezone.utc)
        return to_utc_midnight(v)

    @field_validator('amount', mode='before')
    @classmethod
    def require_numeric_amount(cls, v: Any) -> Any:
        if isinstance(v, bool) or not isinstance(v, (int, float, Decimal)):
            raise ValueError("Amount must be a number")
        return v

    def to_snapshot(self) -> dict[str, Any]:
        """JSON-safe copy used for audit before/after snapshots."""
        return self.model_dump(mode="json")


class TransactionChanges(BaseModel):
    """
    Validated field edits for an existing transaction.

    Only the fields the caller actually sent end up in
    `model_fields_set`; absent fields are left alone.
    """
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    date: Optional[datetime] = None
    category: Optional[TransactionCategory] = None
    amount: Optional[Decimal] = Field(default=None, allow_inf_nan=False)
    notes: Optional[str] = Field(default=None, max_length=1000)
    confirmation_taylor: Optional[StrictBool] = None
    confirmation_dad: Optional[StrictBool] = None

    @field_validator('date', mode='before')
    @classmethod
    def parse_wire_date(cls, v: Any) -> Any:
        if isinstance(v, str):
            return parse_ledger_date(v)
        if isinstance(v, (date, datetime)):
            return to_utc_midnight(v)
        return v

    @field_validator('amount', mode='before')
    @classmethod
    def require_numeric_amount(cls, v: Any) -> Any:
        if isinstance(v, bool) or not isinstance(v, (int, float, Decimal)):
            raise ValueError("Amount must be a number")
        return v

    @model_validator(mode='after')
    def reject_cleared_required_fields(self) -> 'TransactionChanges':
        """Only notes may be explicitly cleared."""
        for name in self.model_fields_set:
            if name != "notes" and getattr(self, name) is None:
                raise ValueError(f"{name} cannot be null")
        return self

    def present_fields(self) -> dict[str, Any]:
        """The edits as a dict, limited to what was sent."""
        return {name: getattr(self, name) for name in self.model_fields_set}


# =============================================================================
# RESULT MODELS
# =============================================================================

class TransactionPage(BaseModel):
    """One page of the ledger in display order."""
    transactions: list[Transaction] = Field(default_factory=list)
    page: int = Field(..., ge=1)
    limit: int = Field(..., ge=1)
    total: int = Field(..., ge=0, description="Rows matching the filter")
    order_token: str = Field(
        ...,
        description="Fingerprint of the full unfiltered display order"
    )


class ReorderResult(BaseModel):
    """Outcome of a successful reorder."""
    ordered_ids: list[UUID]
    order_token: str


class AggregateRow(BaseModel):
    """One group of an aggregation."""
    key: str
    total_amount: Decimal
    count: int = Field(..., ge=0)
