"""Data models for sale records and candidate messages."""
from datetime import datetime
from enum import Enum
from typing import Optional, Union
from pydantic import BaseModel, ConfigDict, Field


class PaymentKind(str, Enum):
    """Which notification phrasing matched."""

    INSTANT = "instant"
    DEFERRED = "deferred"


class SaleRecord(BaseModel):
    """One recorded sale. Created once at validation and never modified."""

    model_config = ConfigDict(frozen=True)

    order_id: int = Field(..., description="Order number (dedup key)")
    order_timestamp: datetime = Field(default_factory=datetime.now)
    product_name: str = Field(..., min_length=1)
    product_variant: Optional[str] = Field(default=None)
    amount: int = Field(..., gt=0, description="Amount in yen")
    payment_kind: PaymentKind

    def to_row(self) -> dict:
        """Row for the sink, in column order."""
        return {
            "order_timestamp": self.order_timestamp.isoformat(),
            "order_id": self.order_id,
            "product_name": self.product_name,
            "product_variant": self.product_variant,
            "amount": self.amount,
        }


class ExtractedFields(BaseModel):
    """Raw extractor output before validation."""

    order_id: Optional[int] = None
    order_timestamp: Optional[datetime] = None
    product_name: Optional[str] = None
    product_variant: Optional[str] = None
    amount: Optional[Union[int, str]] = None
    payment_kind: Optional[PaymentKind] = None


class Candidate(BaseModel):
    """A fetched unit from the source; may bundle several message bodies."""

    id: str
    bodies: list[str] = Field(default_factory=list)
    markers: set[str] = Field(default_factory=set)
    message_ids: list[str] = Field(default_factory=list)
