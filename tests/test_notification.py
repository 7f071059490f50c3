"""Tests for end-to-end notification parsing."""
from datetime import datetime

from salesmail.parse.extractors import SENTINEL_PRODUCT_NAME
from salesmail.parse.models import PaymentKind
from salesmail.parse.notification import NOT_SALE_NOTIFICATION, parse_notification
from salesmail.parse.validate import MISSING_AMOUNT, MISSING_ORDER_ID

NOW = datetime(2025, 6, 1, 12, 0)


def test_instant_notification(instant_body):
    """Instant notification parses into a full record."""
    outcome = parse_notification(instant_body(), now=NOW)
    assert outcome.ok
    record = outcome.record
    assert record.order_id == 20250001
    assert record.order_timestamp == datetime(2025, 1, 15, 14, 30)
    assert record.product_name == "イラストサンプル画集"
    assert record.product_variant is None
    assert record.amount == 1200
    assert record.payment_kind == PaymentKind.INSTANT


def test_deferred_notification(deferred_body):
    """Deferred notification parses with the deferred layout."""
    outcome = parse_notification(deferred_body(), now=NOW)
    assert outcome.ok
    assert outcome.kind == PaymentKind.DEFERRED
    assert outcome.record.product_name == "音楽サウンドトラック"
    assert outcome.record.amount == 2500


def test_variant_in_notification(instant_body):
    """Variant is split off the item line."""
    body = instant_body(item="【グッズ】アクリルスタンド（Aタイプ）", amount="¥1,500")
    record = parse_notification(body, now=NOW).record
    assert record.product_name == "グッズアクリルスタンド"
    assert record.product_variant == "Aタイプ"


def test_variant_extraction_disabled(instant_body):
    """Disabled variant extraction keeps the parenthetical in the name."""
    body = instant_body(item="【グッズ】アクリルスタンド（Aタイプ）", amount="¥1,500")
    record = parse_notification(body, extract_variant=False, now=NOW).record
    assert record.product_name == "グッズアクリルスタンド（Aタイプ）"
    assert record.product_variant is None


def test_encoded_notification(instant_body, encode_qp):
    """A quoted-printable body decodes before extraction."""
    outcome = parse_notification(encode_qp(instant_body()), now=NOW)
    assert outcome.ok
    assert outcome.record.product_name == "イラストサンプル画集"


def test_undecodable_notification(instant_body, encode_qp):
    """A body that cannot be decoded is still parsed in escaped form."""
    outcome = parse_notification(encode_qp(instant_body()) + "\n=FF", now=NOW)
    assert outcome.ok
    assert outcome.record.order_id == 20250001
    assert outcome.record.amount == 1200


def test_not_sale():
    """Unrelated mail is reported as not a sale."""
    outcome = parse_notification("いつもご利用ありがとうございます。新作のお知らせです。", now=NOW)
    assert not outcome.is_sale
    assert not outcome.ok
    assert outcome.reason == NOT_SALE_NOTIFICATION


def test_missing_amount_rejected():
    """A sale notification without an amount is rejected with a reason."""
    outcome = parse_notification("商品が購入されました。注文番号：20250010", now=NOW)
    assert outcome.is_sale
    assert outcome.record is None
    assert outcome.reason == MISSING_AMOUNT


def test_missing_order_id_rejected():
    """A sale notification without an order id is rejected."""
    outcome = parse_notification("商品が購入されました。【本】物語 ¥1,000", now=NOW)
    assert outcome.reason == MISSING_ORDER_ID


def test_amount_only_gets_sentinel():
    """An amount without a recognizable name records the sentinel name."""
    outcome = parse_notification("商品が購入されました。注文番号：20250011。合計 700円", now=NOW)
    assert outcome.ok
    assert outcome.record.product_name == SENTINEL_PRODUCT_NAME
    assert outcome.record.amount == 700


def test_timestamp_defaults_to_now():
    """No timestamp in the body gives the processing time."""
    outcome = parse_notification("商品が購入されました。注文番号：20250012。【本】物語 ¥1,000", now=NOW)
    assert outcome.record.order_timestamp == NOW


def test_empty_body():
    """Empty bodies are not sales and do not raise."""
    assert parse_notification("", now=NOW).reason == NOT_SALE_NOTIFICATION


def test_unbracketed_name_below_order_line():
    """The line above the amount is the name, not the order number above it."""
    body = "商品が購入されました。\n注文番号：20250001\nサンプル画集\n¥1,200\n"
    outcome = parse_notification(body, now=NOW)
    assert outcome.ok
    assert outcome.record.order_id == 20250001
    assert outcome.record.product_name == "サンプル画集"
    assert outcome.record.amount == 1200


def test_unbracketed_name_below_timestamp_line():
    """A timestamp line between the order number and the name is not part of the name."""
    body = (
        "商品が購入されました。\n"
        "注文番号：20250001\n"
        "注文日時：2025年01月15日 14時30分\n"
        "サンプル画集\n"
        "¥1,200\n"
    )
    record = parse_notification(body, now=NOW).record
    assert record.product_name == "サンプル画集"
    assert record.order_timestamp == datetime(2025, 1, 15, 14, 30)


def test_timestamp_line_directly_above_amount():
    """With no name line, the timestamp is not taken for a name."""
    body = "商品が購入されました。\n注文番号：20250001\n注文日時：2025年01月15日 14時30分\n¥1,200\n"
    record = parse_notification(body, now=NOW).record
    assert record.product_name == SENTINEL_PRODUCT_NAME
    assert record.amount == 1200


def test_unbracketed_deferred_name_above_amount_label():
    """The amount's own label line defers to the name line above it."""
    body = "商品が注文されました。\n注文番号：20250002\nサウンドトラック\nお支払い金額：¥2,500\n"
    record = parse_notification(body, now=NOW).record
    assert record.product_name == "サウンドトラック"
    assert record.amount == 2500
