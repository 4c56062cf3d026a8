"""
Deal record consumed by the engine.

Deals are externally owned and read-only here. Every field is coerced
defensively on construction, whether built directly or from a CRM row: a
malformed or negative amount becomes 0, a zero health score is unscored and
a malformed date becomes None (excluded from date math).
"""

import enum
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Mapping, Optional

from forecast_engine.core.parsing import (
    clean_text,
    coerce_amount,
    coerce_date,
    coerce_health_score,
    coerce_timestamp,
    normalize_name_key,
)

UNSPECIFIED_PRODUCT = "(Unspecified)"


class Motion(str, enum.Enum):
    """Go-to-market motion."""
    DIRECT = "direct"
    PARTNER = "partner"


@dataclass(frozen=True)
class Deal:
    """A single opportunity snapshot."""

    id: Any
    org_id: int
    amount: float = 0.0
    raw_stage_text: Optional[str] = None
    health_score: Optional[float] = None  # None = unscored
    owner_id: Optional[int] = None
    owner_name: Optional[str] = None
    partner_name: Optional[str] = None
    create_ts: Optional[datetime] = None
    close_date: Optional[date] = None
    product: str = UNSPECIFIED_PRODUCT

    def __post_init__(self):
        # frozen: normalize in place through object.__setattr__
        coerced = {
            "amount": coerce_amount(self.amount),
            "health_score": coerce_health_score(self.health_score),
            "owner_name": clean_text(self.owner_name),
            "partner_name": clean_text(self.partner_name),
            "create_ts": coerce_timestamp(self.create_ts, field="create_ts"),
            "close_date": coerce_date(self.close_date, field="close_date"),
            "product": clean_text(self.product) or UNSPECIFIED_PRODUCT,
        }
        for name, value in coerced.items():
            object.__setattr__(self, name, value)

    @property
    def motion(self) -> Motion:
        return Motion.PARTNER if self.partner_name else Motion.DIRECT

    @property
    def owner_key(self) -> str:
        return normalize_name_key(self.owner_name)

    @property
    def create_date(self) -> Optional[date]:
        return self.create_ts.date() if self.create_ts else None

    @property
    def cycle_days(self) -> Optional[int]:
        """Days from creation to close; None unless both dates are known."""
        if self.create_date is None or self.close_date is None:
            return None
        return (self.close_date - self.create_date).days

    @classmethod
    def from_mapping(cls, row: Mapping[str, Any]) -> "Deal":
        """
        Build a Deal from a loosely-typed record.

        Accepts either engine field names or the CRM column names
        (forecast_stage, rep_id, rep_name, create_date).
        """
        owner_id = row.get("owner_id", row.get("rep_id"))
        try:
            owner_id = int(owner_id) if owner_id not in (None, "") else None
        except (TypeError, ValueError):
            owner_id = None

        return cls(
            id=row.get("id"),
            org_id=int(row["org_id"]),
            amount=row.get("amount"),
            raw_stage_text=row.get("raw_stage_text", row.get("forecast_stage")),
            health_score=row.get("health_score"),
            owner_id=owner_id,
            owner_name=row.get("owner_name", row.get("rep_name")),
            partner_name=row.get("partner_name"),
            create_ts=row.get("create_ts", row.get("create_date")),
            close_date=row.get("close_date"),
            product=row.get("product"),
        )
