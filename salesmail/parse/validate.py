"""Validate extracted fields into a SaleRecord."""
import logging
from datetime import datetime
from typing import Optional, Union

from pydantic import ValidationError

from salesmail.parse.extractors import SENTINEL_PRODUCT_NAME
from salesmail.parse.models import ExtractedFields, PaymentKind, SaleRecord

logger = logging.getLogger(__name__)

MISSING_ORDER_ID = "missing_order_id"
MISSING_AMOUNT = "missing_amount"
INVALID_AMOUNT = "invalid_amount"
NON_POSITIVE_AMOUNT = "non_positive_amount"
INVALID_RECORD = "invalid_record"


def parse_amount(value: Union[int, str, None]) -> Optional[int]:
    """Parse "1,200" / "1200" / 1200 into an int; None when not numeric."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    cleaned = str(value).replace(",", "").strip()
    try:
        return int(cleaned)
    except ValueError:
        return None


def validate_record(
    fields: ExtractedFields,
    now: Optional[datetime] = None,
) -> tuple[Optional[SaleRecord], Optional[str]]:
    """
    Returns (record, None) on success or (None, reason) on rejection.
    A missing name is replaced by the sentinel, never rejected.
    """
    if fields.order_id is None:
        return None, MISSING_ORDER_ID
    if fields.amount is None or (isinstance(fields.amount, str) and not fields.amount.strip()):
        return None, MISSING_AMOUNT
    amount = parse_amount(fields.amount)
    if amount is None:
        return None, INVALID_AMOUNT
    if amount <= 0:
        return None, NON_POSITIVE_AMOUNT

    name = (fields.product_name or "").strip() or SENTINEL_PRODUCT_NAME
    variant = (fields.product_variant or "").strip() or None
    try:
        record = SaleRecord(
            order_id=fields.order_id,
            order_timestamp=fields.order_timestamp or now or datetime.now(),
            product_name=name,
            product_variant=variant,
            amount=amount,
            payment_kind=fields.payment_kind or PaymentKind.INSTANT,
        )
    except ValidationError as e:
        logger.debug(f"Record for order {fields.order_id} failed model validation: {e}")
        return None, INVALID_RECORD
    return record, None
