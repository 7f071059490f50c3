"""Parse a single notification body into a sale record."""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from salesmail.parse.extractors import detect_payment_kind, extract_fields
from salesmail.parse.models import PaymentKind, SaleRecord
from salesmail.parse.normalize import normalize_body, normalize_lines
from salesmail.parse.validate import validate_record

logger = logging.getLogger(__name__)

NOT_SALE_NOTIFICATION = "not_sale_notification"


@dataclass(frozen=True)
class ParseOutcome:
    """Result of parsing one body: a record, or the reason there is none."""

    record: Optional[SaleRecord] = None
    reason: Optional[str] = None
    kind: Optional[PaymentKind] = None

    @property
    def is_sale(self) -> bool:
        return self.kind is not None

    @property
    def ok(self) -> bool:
        return self.record is not None


def parse_notification(
    raw_body: str,
    extract_variant: bool = True,
    now: Optional[datetime] = None,
) -> ParseOutcome:
    """Normalize, classify, extract and validate one message body."""
    text = normalize_body(raw_body)
    kind = detect_payment_kind(text)
    if kind is None:
        return ParseOutcome(reason=NOT_SALE_NOTIFICATION)

    fields = extract_fields(
        text,
        kind,
        extract_variant=extract_variant,
        now=now,
        lines=normalize_lines(raw_body),
    )
    record, reason = validate_record(fields, now=now)
    if record is None:
        logger.debug(f"Rejected {kind.value} notification: {reason}")
    return ParseOutcome(record=record, reason=reason, kind=kind)
