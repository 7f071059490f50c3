"""
Field extractors for sale notification bodies.

Every field is resolved by an ordered tuple of strategies; the first strategy
returning something other than None wins. Precise, label-anchored patterns come
first, the same shapes in quoted-printable escaped form second (bodies whose
decode failed reach us still escaped), and permissive fallbacks last so they
never pre-empt a structured match.
"""
import logging
import quopri
import re
from datetime import datetime
from typing import Callable, NamedTuple, Optional, Sequence, TypeVar

from salesmail.parse.models import ExtractedFields, PaymentKind
from salesmail.parse.normalize import escape_text

logger = logging.getLogger(__name__)

T = TypeVar("T")

SENTINEL_PRODUCT_NAME = "不明な商品"

INSTANT_PHRASES = ("商品が購入されました", "支払いが完了しました")
DEFERRED_PHRASES = ("商品が注文されました", "お支払い待ち")

# Words that mark a metadata label rather than a product line
STOP_WORDS = ("注文", "番号", "日時", "日付", "支払", "order", "number", "date", "payment")
GENERIC_NAME_MAX_LENGTH = 40

_HEX = r"=[0-9A-Fa-f]{2}"
_SOFT_BREAK = re.compile(r"=\r?\n")
_WHITESPACE = re.compile(r"\s+")


class ProductMatch(NamedTuple):
    name: Optional[str]
    amount: Optional[str]


def first_match(strategies: Sequence[Callable[[str], Optional[T]]], text: str) -> Optional[T]:
    """Run strategies in order and return the first non-None result."""
    for strategy in strategies:
        result = strategy(text)
        if result is not None:
            logger.debug(f"Matched by {strategy.__name__}")
            return result
    return None


def _escaped(word: str) -> str:
    return re.escape(escape_text(word))


def _either(*words: str) -> str:
    return "(?:" + "|".join(words) + ")"


def _strip_soft_breaks(text: str) -> str:
    return _SOFT_BREAK.sub("", text)


def _decode_fragment(fragment: str) -> str:
    """Best-effort decode of an escaped fragment captured by an escaped pattern."""
    decoded = quopri.decodestring(fragment.encode("utf-8")).decode("utf-8", errors="replace")
    return _WHITESPACE.sub(" ", decoded).strip()


# Order id ------------------------------------------------------------------

_LABELLED_ORDER_ID = re.compile(
    r"(?:注文番号|Order\s*(?:ID|No\.?|Number))\s*[:：#]?\s*([0-9]+)", re.IGNORECASE
)
_LONG_DIGIT_RUN = re.compile(r"[0-9]{8,}")


def labelled_order_id(text: str) -> Optional[int]:
    match = _LABELLED_ORDER_ID.search(text)
    return int(match.group(1)) if match else None


def long_digit_run(text: str) -> Optional[int]:
    # Permissive: phone numbers or amounts written without separators also match
    match = _LONG_DIGIT_RUN.search(_strip_soft_breaks(text))
    return int(match.group(0)) if match else None


ORDER_ID_STRATEGIES = (labelled_order_id, long_digit_run)


def extract_order_id(text: str) -> Optional[int]:
    return first_match(ORDER_ID_STRATEGIES, text)


# Order timestamp -------------------------------------------------------------

def _timestamp_pattern(year: str, month: str, day: str, hour: str, minute: str, filler: str) -> re.Pattern:
    return re.compile(
        rf"([0-9]{{4}}){year}\s*([0-9]{{1,2}}){month}\s*([0-9]{{1,2}}){day}"
        rf"{filler}([0-9]{{1,2}}){hour}\s*([0-9]{{1,2}}){minute}"
    )


# Filler between the date and time parts tolerates a weekday such as "(水)"
_PLAIN_TIMESTAMP = _timestamp_pattern("年", "月", "日", "時", "分", r"[^0-9]{0,12}?")
_ESCAPED_TIMESTAMP = _timestamp_pattern(
    *(_escaped(word) for word in ("年", "月", "日", "時", "分")),
    filler=rf"(?:\s|{_HEX}|[()])*?",
)


def _to_datetime(match: Optional[re.Match]) -> Optional[datetime]:
    if not match:
        return None
    try:
        return datetime(*(int(part) for part in match.groups()))
    except ValueError:
        return None


def plain_timestamp(text: str) -> Optional[datetime]:
    return _to_datetime(_PLAIN_TIMESTAMP.search(text))


def escaped_timestamp(text: str) -> Optional[datetime]:
    return _to_datetime(_ESCAPED_TIMESTAMP.search(_strip_soft_breaks(text)))


TIMESTAMP_STRATEGIES = (plain_timestamp, escaped_timestamp)


def extract_order_timestamp(text: str, now: Optional[datetime] = None) -> datetime:
    """Timestamp from the body, or processing time when nothing matches."""
    found = first_match(TIMESTAMP_STRATEGIES, text)
    if found is not None:
        return found
    return now or datetime.now()


# Payment kind ----------------------------------------------------------------

def _phrase_end(text: str, phrases: Sequence[str]) -> Optional[int]:
    positions = [match.end() for match in (re.search(re.escape(p), text) for p in phrases) if match]
    return min(positions) if positions else None


def _escaped_phrase_end(text: str, phrases: Sequence[str]) -> Optional[int]:
    return _phrase_end(text, [escape_text(p) for p in phrases])


def _mentions(text: str, phrases: Sequence[str]) -> bool:
    return (
        _phrase_end(text, phrases) is not None
        or _escaped_phrase_end(_strip_soft_breaks(text), phrases) is not None
    )


def detect_payment_kind(text: str) -> Optional[PaymentKind]:
    """Instant phrasing is tested first; None means not a sale notification."""
    if _mentions(text, INSTANT_PHRASES):
        return PaymentKind.INSTANT
    if _mentions(text, DEFERRED_PHRASES):
        return PaymentKind.DEFERRED
    return None


# Product name and amount -------------------------------------------------------

_AMOUNT = r"[¥￥]\s*(?P<amount>[0-9][0-9,]*)"
_BRACKETED = r"【(?P<category>[^】]{1,40})】\s*(?P<name>[^【】¥￥]{1,80}?)\s*"
_DEFERRED_LABEL = r"(?:(?:お支払い金額|合計)\s*[:：]?\s*)?"

_INSTANT_ITEM = re.compile(_BRACKETED + _AMOUNT)
_DEFERRED_ITEM = re.compile(_BRACKETED + _DEFERRED_LABEL + _AMOUNT)


def _escaped_item_pattern(with_deferred_label: bool) -> re.Pattern:
    currency = _either(_escaped("¥"), _escaped("￥"))
    label = ""
    if with_deferred_label:
        colon = _either(":", _escaped("："))
        label = rf"(?:{_either(_escaped('お支払い金額'), _escaped('合計'))}\s*{colon}?\s*)?"
    return re.compile(
        rf"{_escaped('【')}(?P<category>(?:{_HEX}|[^=\s])+?){_escaped('】')}\s*"
        rf"(?P<name>(?:{_HEX}|[^=])+?)\s*{label}{currency}\s*(?P<amount>[0-9][0-9,]*)",
        re.IGNORECASE,
    )


_ESCAPED_INSTANT_ITEM = _escaped_item_pattern(with_deferred_label=False)
_ESCAPED_DEFERRED_ITEM = _escaped_item_pattern(with_deferred_label=True)


def _bracketed_item(text: str, phrases: Sequence[str], pattern: re.Pattern) -> Optional[ProductMatch]:
    start = _phrase_end(text, phrases)
    if start is None:
        return None
    match = pattern.search(text, start)
    if not match:
        return None
    name = match["category"].strip() + match["name"].strip()
    return ProductMatch(name or None, match["amount"])


def _escaped_bracketed_item(text: str, phrases: Sequence[str], pattern: re.Pattern) -> Optional[ProductMatch]:
    text = _strip_soft_breaks(text)
    start = _escaped_phrase_end(text, phrases)
    if start is None:
        return None
    match = pattern.search(text, start)
    if not match:
        return None
    name = _decode_fragment(match["category"]) + _decode_fragment(match["name"])
    return ProductMatch(name or None, match["amount"])


def instant_bracketed_item(text: str) -> Optional[ProductMatch]:
    return _bracketed_item(text, INSTANT_PHRASES, _INSTANT_ITEM)


def instant_escaped_item(text: str) -> Optional[ProductMatch]:
    return _escaped_bracketed_item(text, INSTANT_PHRASES, _ESCAPED_INSTANT_ITEM)


def deferred_bracketed_item(text: str) -> Optional[ProductMatch]:
    return _bracketed_item(text, DEFERRED_PHRASES, _DEFERRED_ITEM)


def deferred_escaped_item(text: str) -> Optional[ProductMatch]:
    return _escaped_bracketed_item(text, DEFERRED_PHRASES, _ESCAPED_DEFERRED_ITEM)


_CURRENCY_AMOUNT = re.compile(r"[¥￥]\s*([0-9][0-9,]*)")
_CLAUSE_BREAK = re.compile(r"[。】\n]")
_LABEL_BREAK = re.compile(r"[:：]")


def contains_stop_word(segment: str) -> bool:
    lowered = segment.lower()
    return any(word in lowered for word in STOP_WORDS)


def generic_line_before_amount(text: str) -> Optional[ProductMatch]:
    """
    Take the short segment right before the first currency-marked amount.

    The clause holding that segment (its line, or its sentence when the text
    has no line breaks) is rejected as a whole when it carries a metadata
    label, so a label's value is never taken for a name. A clause that is only
    the amount's own label defers to the clause before it. Otherwise the part
    after the last colon is the name.
    """
    match = _CURRENCY_AMOUNT.search(text)
    if not match:
        return None
    clauses = [clause.strip() for clause in _CLAUSE_BREAK.split(text[: match.start()].rstrip())]
    clause = clauses[-1]
    if len(clauses) > 1 and clause and not _LABEL_BREAK.split(clause)[-1].strip():
        # The amount's own label ("お支払い金額：") sits on the amount line
        clause = clauses[-2]
    if contains_stop_word(clause):
        logger.debug(f"Discarding name candidate with metadata label: {clause!r}")
        return ProductMatch(None, match.group(1))
    segment = _LABEL_BREAK.split(clause)[-1].strip()
    name = segment if 0 < len(segment) <= GENERIC_NAME_MAX_LENGTH else None
    return ProductMatch(name, match.group(1))


PRODUCT_STRATEGIES = {
    PaymentKind.INSTANT: (instant_bracketed_item, instant_escaped_item),
    PaymentKind.DEFERRED: (deferred_bracketed_item, deferred_escaped_item),
}

_ANY_AMOUNT = re.compile(
    rf"{_either('[¥￥]', _escaped('¥'), _escaped('￥'))}\s*(?P<prefixed>[0-9][0-9,]*)"
    rf"|(?P<suffixed>[0-9][0-9,]*)\s*{_either('円', _escaped('円'))}",
    re.IGNORECASE,
)


def last_resort_amount(text: str) -> Optional[str]:
    match = _ANY_AMOUNT.search(_strip_soft_breaks(text))
    if not match:
        return None
    return match["prefixed"] or match["suffixed"]


# Variant -----------------------------------------------------------------------

_VARIANT_SUFFIXES = (
    re.compile(r"^(?P<name>.+?)\s*（(?P<variant>[^（）]+)）$"),
    re.compile(r"^(?P<name>.+?)\s*\((?P<variant>[^()]+)\)$"),
)


def split_variant(name: str) -> tuple[str, Optional[str]]:
    """Split a trailing full-width or half-width parenthetical off the name."""
    for pattern in _VARIANT_SUFFIXES:
        match = pattern.match(name.strip())
        if match:
            return match["name"].strip(), match["variant"].strip()
    return name, None


# All fields --------------------------------------------------------------------

def extract_product(text: str, kind: PaymentKind, lines: Optional[str] = None) -> ProductMatch:
    """Kind-specific patterns over normalized text, then the generic line fallback."""
    product = first_match(PRODUCT_STRATEGIES[kind], text)
    if product is None:
        # The generic fallback needs line boundaries, which normalized text has lost
        product = generic_line_before_amount(lines if lines is not None else text)
        if product is not None:
            logger.debug("Matched by generic_line_before_amount")
    return product or ProductMatch(None, None)


def extract_fields(
    text: str,
    kind: PaymentKind,
    extract_variant: bool = True,
    now: Optional[datetime] = None,
    lines: Optional[str] = None,
) -> ExtractedFields:
    """
    Run every field cascade over normalized text of a known notification kind.

    lines is the same body decoded with its line breaks kept; when given, the
    generic name fallback reads it instead of the single-line text.
    """
    name, amount = extract_product(text, kind, lines)
    if amount is None:
        amount = last_resort_amount(text)
    variant = None
    if name is None and amount is not None:
        name = SENTINEL_PRODUCT_NAME
    elif name is not None and extract_variant:
        name, variant = split_variant(name)
    return ExtractedFields(
        order_id=extract_order_id(text),
        order_timestamp=extract_order_timestamp(text, now),
        product_name=name,
        product_variant=variant,
        amount=amount,
        payment_kind=kind,
    )
