"""
Customer data snapshots consumed by segment, trigger and RFM evaluation.

Snapshots are immutable for the duration of an evaluation; the customer
provider builds them from whatever store holds the e-commerce data.
"""

from datetime import datetime
from typing import Annotated, Any, Optional

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, field_validator

from app.core.clock import to_naive_utc

UtcDatetime = Annotated[datetime, AfterValidator(to_naive_utc)]


class Address(BaseModel):
    model_config = ConfigDict(frozen=True)

    address1: Optional[str] = None
    city: Optional[str] = None
    province: Optional[str] = None
    country: Optional[str] = None
    zip: Optional[str] = None


class CustomerSnapshot(BaseModel):
    """Point-in-time view of a customer."""

    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: str
    email: Optional[str] = None
    phone: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None

    orders_count: int = 0
    total_spent: float = 0.0
    last_order_at: Optional[UtcDatetime] = None
    created_at: Optional[UtcDatetime] = None
    updated_at: Optional[UtcDatetime] = None

    addresses: list[Address] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    accepts_marketing: bool = False
    sms_opt_in: bool = False
    interests: list[str] = Field(default_factory=list)
    properties: dict[str, Any] = Field(default_factory=dict)

    @field_validator("tags", "interests", mode="before")
    @classmethod
    def split_comma_list(cls, v):
        # Shopify hands tags over as one comma separated string
        if v is None:
            return []
        if isinstance(v, str):
            return [part.strip() for part in v.split(",") if part.strip()]
        return v

    @field_validator("addresses", "properties", mode="before")
    @classmethod
    def none_as_empty(cls, v, info):
        if v is None:
            return [] if info.field_name == "addresses" else {}
        return v

    @property
    def full_name(self) -> Optional[str]:
        name = " ".join(part for part in (self.first_name, self.last_name) if part)
        return name or None

    @property
    def default_address(self) -> Optional[Address]:
        return self.addresses[0] if self.addresses else None


class OrderSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: str
    customer_id: Optional[str] = None
    email: Optional[str] = None
    total_price: float = 0.0
    created_at: UtcDatetime
    line_items: list[dict[str, Any]] = Field(default_factory=list)

    @field_validator("line_items", mode="before")
    @classmethod
    def none_as_empty(cls, v):
        return v or []


class EventOccurrence(BaseModel):
    """One occurrence of a named customer event (order_placed, cart_abandoned...)."""

    model_config = ConfigDict(frozen=True, from_attributes=True)

    customer_id: str
    event_name: str
    properties: dict[str, Any] = Field(default_factory=dict)
    occurred_at: UtcDatetime

    @field_validator("properties", mode="before")
    @classmethod
    def none_as_empty(cls, v):
        return v or {}


class RFMScore(BaseModel):
    recency: int = Field(..., ge=1, le=5)
    frequency: int = Field(..., ge=1, le=5)
    monetary: int = Field(..., ge=1, le=5)
    segment: str
    days_since_last_order: int
    order_count: int
    total_spent: float


class CustomerFilter(BaseModel):
    """Narrowing options for ``list_customers``."""

    ids: Optional[list[str]] = None
    tag: Optional[str] = None
    accepts_marketing: Optional[bool] = None
    limit: Optional[int] = Field(None, ge=1)
