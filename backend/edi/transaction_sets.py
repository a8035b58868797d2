"""
X12 Transaction-Set Builders and Extractors

One builder/extractor pair per supported document:

    850  Purchase Order          BEG, N1, PO1/PID …, CTT
    810  Invoice                 BIG, IT1/PID …, TDS, CTT
    856  Ship Notice             BSN, HL(S), TD5, HL(O), PRF, HL(I)/LIN/SN1/PID …, CTT
    997  Functional Ack          AK1, AK2/AK5 …, AK9

Builders return the body segments (between ST and SE) as strings, ready
for X12Generator.build_interchange. Extractors turn a parsed
TransactionSet back into canonical rows: header fields repeated on every
row plus the line fields the builder consumed, so that
``extract(parse(build(header, lines)))`` reproduces ``lines``.

Lossy on the round trip:
  - delimiter characters are removed from values
  - numbers are normalised (``2.50`` → ``2.5``, ``10.0`` → ``10``)
  - ``line_number`` is reassigned 1..n
  - a missing ``unit_of_measure`` becomes ``EA``
  - the 810 ``total_amount`` is rounded to cents; an unreadable TDS leaves it blank
  - leading and trailing whitespace is trimmed from every value
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

import structlog

from core.errors import TransformError
from edi.x12_parser import DEFAULT_DELIMITERS, Delimiters, Segment, TransactionSet

logger = structlog.get_logger()

LINE_FIELDS = ("line_number", "item_number", "description", "quantity", "unit_of_measure", "unit_price")
SHIP_LINE_FIELDS = ("line_number", "item_number", "description", "quantity", "unit_of_measure")
ACK_LINE_FIELDS = ("line_number", "transaction_type", "control_number", "status")

# Preferred product ID qualifiers, most specific first
PRODUCT_QUALIFIERS = ("VP", "BP", "IN", "UP", "SK", "EN")

DEFAULT_UOM = "EA"


# ── Headers ───────────────────────────────────────────────────────────────


@dataclass
class PurchaseOrderHeader:
    po_number: str
    po_date: str | date | None = None
    buyer_id: str = ""
    buyer_name: str = ""
    purpose_code: str = "00"  # 00 = original
    order_type: str = "NE"  # NE = new order


@dataclass
class InvoiceHeader:
    invoice_number: str
    invoice_date: str | date | None = None
    po_number: str = ""
    total_amount: Any = None  # computed from lines when None


@dataclass
class ShipNoticeHeader:
    shipment_id: str
    ship_date: str | date | None = None
    ship_time: str | None = None
    po_number: str = ""
    carrier: str = ""


@dataclass
class AcknowledgmentHeader:
    functional_code: str
    group_control_number: str
    accepted: bool = True


# ── Value helpers ─────────────────────────────────────────────────────────


def format_number(value: Any) -> str:
    """Canonical decimal text: no exponent, no trailing fractional zeros."""
    if value is None or value == "":
        return ""
    try:
        number = Decimal(str(value).strip())
    except InvalidOperation as exc:
        raise TransformError(f"Not a number: {value!r}") from exc
    if not number.is_finite():
        raise TransformError(f"Not a finite number: {value!r}")
    text = format(number.normalize(), "f")
    return "0" if text == "-0" else text


def _decimal(value: Any) -> Decimal:
    text = format_number(value)
    return Decimal(text) if text else Decimal(0)


def x12_date(value: Any) -> str:
    """CCYYMMDD from a date, datetime, ISO string or CCYYMMDD string."""
    if value is None or value == "":
        return datetime.utcnow().strftime("%Y%m%d")
    if isinstance(value, (date, datetime)):
        return value.strftime("%Y%m%d")
    text = str(value).strip()
    if len(text) == 8 and text.isdigit():
        return text
    try:
        return datetime.fromisoformat(text[:10]).strftime("%Y%m%d")
    except ValueError as exc:
        raise TransformError(f"Unrecognised date: {value!r}") from exc


def iso_date(value: str) -> str:
    if len(value) == 8 and value.isdigit():
        return f"{value[:4]}-{value[4:6]}-{value[6:]}"
    return value


def _text(value: Any, delimiters: Delimiters) -> str:
    if value is None:
        return ""
    return delimiters.strip(str(value)).strip()


def _segment(delimiters: Delimiters, segment_id: str, *elements: Any) -> str:
    values = [_text(e, delimiters) for e in elements]
    while values and values[-1] == "":
        values.pop()
    return delimiters.element.join([segment_id, *values])


def _product_id(segment: Segment, start: int) -> str:
    """Pick the product ID out of qualifier/value pairs starting at ``start``."""
    pairs: dict[str, str] = {}
    first = ""
    for pos in range(start, len(segment.elements) + 1, 2):
        qualifier, value = segment.get(pos), segment.get(pos + 1)
        if not value:
            continue
        pairs.setdefault(qualifier, value)
        first = first or value
    for qualifier in PRODUCT_QUALIFIERS:
        if qualifier in pairs:
            return pairs[qualifier]
    return first


def _line_value(line: Mapping[str, Any], key: str) -> Any:
    value = line.get(key)
    return "" if value is None else value


# ── 850 Purchase Order ────────────────────────────────────────────────────


def build_850(
    header: PurchaseOrderHeader,
    lines: list[Mapping[str, Any]],
    delimiters: Delimiters = DEFAULT_DELIMITERS,
) -> list[str]:
    seg = lambda *parts: _segment(delimiters, *parts)  # noqa: E731

    segments = [seg("BEG", header.purpose_code, header.order_type, header.po_number, "", x12_date(header.po_date))]
    if header.buyer_id:
        segments.append(seg("N1", "BY", header.buyer_name, "92", header.buyer_id))
    elif header.buyer_name:
        segments.append(seg("N1", "BY", header.buyer_name))

    hash_total = Decimal(0)
    for n, line in enumerate(lines, start=1):
        price = format_number(_line_value(line, "unit_price"))
        quantity = format_number(_line_value(line, "quantity"))
        hash_total += _decimal(quantity)
        segments.append(
            seg(
                "PO1",
                n,
                quantity,
                _line_value(line, "unit_of_measure") or DEFAULT_UOM,
                price,
                "PE" if price else "",
                "VP",
                _line_value(line, "item_number"),
            )
        )
        if _line_value(line, "description"):
            segments.append(seg("PID", "F", "", "", "", line["description"]))

    segments.append(seg("CTT", len(lines), format_number(hash_total)))
    return segments


def extract_850(transaction_set: TransactionSet) -> list[dict[str, str]]:
    header = {"po_number": "", "po_date": "", "buyer_id": "", "buyer_name": ""}
    rows: list[dict[str, str]] = []
    current: dict[str, str] | None = None

    for segment in transaction_set.segments:
        if segment.id == "BEG":
            header["po_number"] = segment.get(3)
            header["po_date"] = iso_date(segment.get(5))
        elif segment.id == "N1" and segment.get(1) == "BY":
            header["buyer_name"] = segment.get(2)
            header["buyer_id"] = segment.get(4)
        elif segment.id == "PO1":
            current = {
                "line_number": segment.get(1),
                "item_number": _product_id(segment, 6),
                "description": "",
                "quantity": segment.get(2),
                "unit_of_measure": segment.get(3),
                "unit_price": segment.get(4),
            }
            rows.append(current)
        elif segment.id == "PID" and current is not None:
            current["description"] = segment.get(5)

    return [{**header, **row} for row in rows]


# ── 810 Invoice ───────────────────────────────────────────────────────────


def build_810(
    header: InvoiceHeader,
    lines: list[Mapping[str, Any]],
    delimiters: Delimiters = DEFAULT_DELIMITERS,
) -> list[str]:
    seg = lambda *parts: _segment(delimiters, *parts)  # noqa: E731

    segments = [seg("BIG", x12_date(header.invoice_date), header.invoice_number, "", header.po_number)]

    computed_total = Decimal(0)
    for n, line in enumerate(lines, start=1):
        quantity = format_number(_line_value(line, "quantity"))
        price = format_number(_line_value(line, "unit_price"))
        computed_total += _decimal(quantity) * _decimal(price)
        segments.append(
            seg(
                "IT1",
                n,
                quantity,
                _line_value(line, "unit_of_measure") or DEFAULT_UOM,
                price,
                "",
                "VP",
                _line_value(line, "item_number"),
            )
        )
        if _line_value(line, "description"):
            segments.append(seg("PID", "F", "", "", "", line["description"]))

    total = _decimal(header.total_amount) if header.total_amount not in (None, "") else computed_total
    cents = (total * 100).quantize(Decimal(1), rounding=ROUND_HALF_UP)
    segments.append(seg("TDS", format_number(cents)))
    segments.append(seg("CTT", len(lines)))
    return segments


def extract_810(transaction_set: TransactionSet) -> list[dict[str, str]]:
    header = {"invoice_number": "", "invoice_date": "", "po_number": "", "total_amount": ""}
    rows: list[dict[str, str]] = []
    current: dict[str, str] | None = None

    for segment in transaction_set.segments:
        if segment.id == "BIG":
            header["invoice_date"] = iso_date(segment.get(1))
            header["invoice_number"] = segment.get(2)
            header["po_number"] = segment.get(4)
        elif segment.id == "IT1":
            current = {
                "line_number": segment.get(1),
                "item_number": _product_id(segment, 6),
                "description": "",
                "quantity": segment.get(2),
                "unit_of_measure": segment.get(3),
                "unit_price": segment.get(4),
            }
            rows.append(current)
        elif segment.id == "PID" and current is not None:
            current["description"] = segment.get(5)
        elif segment.id == "TDS" and segment.get(1):
            try:
                cents = _decimal(segment.get(1))
            except TransformError:
                logger.warning(
                    "x12.810.total_unreadable",
                    invoice_number=header["invoice_number"],
                    tds=segment.get(1),
                )
                continue
            header["total_amount"] = f"{cents / 100:.2f}"

    return [{**header, **row} for row in rows]


# ── 856 Ship Notice ───────────────────────────────────────────────────────


def build_856(
    header: ShipNoticeHeader,
    lines: list[Mapping[str, Any]],
    delimiters: Delimiters = DEFAULT_DELIMITERS,
) -> list[str]:
    seg = lambda *parts: _segment(delimiters, *parts)  # noqa: E731

    ship_time = header.ship_time or datetime.utcnow().strftime("%H%M")
    segments = [
        seg("BSN", "00", header.shipment_id, x12_date(header.ship_date), ship_time),
        seg("HL", 1, "", "S"),
    ]
    if header.carrier:
        segments.append(seg("TD5", "B", "2", header.carrier))
    segments.append(seg("HL", 2, 1, "O"))
    if header.po_number:
        segments.append(seg("PRF", header.po_number))

    for n, line in enumerate(lines, start=1):
        segments.append(seg("HL", n + 2, 2, "I"))
        segments.append(seg("LIN", "", "VP", _line_value(line, "item_number")))
        segments.append(
            seg(
                "SN1",
                n,
                format_number(_line_value(line, "quantity")),
                _line_value(line, "unit_of_measure") or DEFAULT_UOM,
            )
        )
        if _line_value(line, "description"):
            segments.append(seg("PID", "F", "", "", "", line["description"]))

    segments.append(seg("CTT", len(lines) + 2))
    return segments


def extract_856(transaction_set: TransactionSet) -> list[dict[str, str]]:
    header = {"shipment_id": "", "ship_date": "", "ship_time": "", "po_number": "", "carrier": ""}
    rows: list[dict[str, str]] = []
    current: dict[str, str] | None = None

    def _new_item() -> dict[str, str]:
        row = {"line_number": "", "item_number": "", "description": "", "quantity": "", "unit_of_measure": ""}
        rows.append(row)
        return row

    for segment in transaction_set.segments:
        if segment.id == "BSN":
            header["shipment_id"] = segment.get(2)
            header["ship_date"] = iso_date(segment.get(3))
            header["ship_time"] = segment.get(4)
        elif segment.id == "TD5":
            header["carrier"] = segment.get(3)
        elif segment.id == "PRF":
            header["po_number"] = segment.get(1)
        elif segment.id == "HL":
            current = _new_item() if segment.get(3) == "I" else None
        elif segment.id == "LIN":
            current = current if current is not None and not current["item_number"] else _new_item()
            current["item_number"] = _product_id(segment, 2)
        elif segment.id == "SN1":
            if current is None:
                current = _new_item()
            current["line_number"] = segment.get(1)
            current["quantity"] = segment.get(2)
            current["unit_of_measure"] = segment.get(3)
        elif segment.id == "PID" and current is not None:
            current["description"] = segment.get(5)

    return [{**header, **row} for row in rows]


# ── 997 Functional Acknowledgment ─────────────────────────────────────────


def build_997(
    header: AcknowledgmentHeader,
    lines: list[Mapping[str, Any]],
    delimiters: Delimiters = DEFAULT_DELIMITERS,
) -> list[str]:
    """One AK2/AK5 pair per acknowledged set; AK9 summarises the group."""
    seg = lambda *parts: _segment(delimiters, *parts)  # noqa: E731

    segments = [seg("AK1", header.functional_code, header.group_control_number)]
    accepted_count = 0
    for line in lines:
        status = "A" if str(_line_value(line, "status")).upper() in ("A", "ACCEPTED") else "R"
        accepted_count += status == "A"
        segments.append(seg("AK2", _line_value(line, "transaction_type"), _line_value(line, "control_number")))
        segments.append(seg("AK5", status))

    if lines:
        included = len(lines)
        if accepted_count == included:
            group_status = "A"
        elif accepted_count == 0:
            group_status = "R"
        else:
            group_status = "P"
    else:
        included = 1
        accepted_count = 1 if header.accepted else 0
        group_status = "A" if header.accepted else "R"

    segments.append(seg("AK9", group_status, included, included, accepted_count))
    return segments


def extract_997(transaction_set: TransactionSet) -> list[dict[str, str]]:
    header = {"functional_code": "", "group_control_number": "", "group_status": ""}
    rows: list[dict[str, str]] = []
    current: dict[str, str] | None = None

    for segment in transaction_set.segments:
        if segment.id == "AK1":
            header["functional_code"] = segment.get(1)
            header["group_control_number"] = segment.get(2)
        elif segment.id == "AK2":
            current = {
                "line_number": str(len(rows) + 1),
                "transaction_type": segment.get(1),
                "control_number": segment.get(2),
                "status": "",
            }
            rows.append(current)
        elif segment.id == "AK5" and current is not None:
            current["status"] = segment.get(1)
        elif segment.id == "AK9":
            header["group_status"] = segment.get(1)

    return [{**header, **row} for row in rows]


def generate_997(
    reference_transaction_number: str,
    reference_document_type: str,
    accepted: bool = True,
    today: date | None = None,
) -> list[dict[str, str]]:
    """Canonical 997 rows for the generic (non-X12) formats."""
    today = today or datetime.utcnow().date()
    return [
        {
            "acknowledgment_code": "A" if accepted else "R",
            "original_transaction_number": reference_transaction_number,
            "original_document_type": reference_document_type,
            "acknowledgment_date": today.isoformat(),
            "status": "Accepted" if accepted else "Rejected",
        }
    ]


# ── Dispatch ──────────────────────────────────────────────────────────────

BUILDERS = {
    "850": build_850,
    "810": build_810,
    "856": build_856,
    "997": build_997,
}

EXTRACTORS = {
    "850": extract_850,
    "810": extract_810,
    "856": extract_856,
    "997": extract_997,
}


def extract_rows(transaction_set: TransactionSet) -> list[dict[str, str]]:
    """Canonical rows for a parsed set; unmodelled types yield one row per segment."""
    extractor = EXTRACTORS.get(transaction_set.transaction_type)
    if extractor is not None:
        return extractor(transaction_set)
    return [
        {"segment": s.id, **{f"{s.id}{pos:02d}": value for pos, value in enumerate(s.elements, start=1)}}
        for s in transaction_set.segments
    ]


def header_from_rows(document_type: str, rows: list[Mapping[str, Any]], record_number: str = ""):
    """Derive the builder header from the header fields carried on the first row."""
    first = rows[0] if rows else {}
    get = lambda key: first.get(key) or ""  # noqa: E731

    if document_type == "850":
        return PurchaseOrderHeader(
            po_number=get("po_number") or record_number,
            po_date=get("po_date") or None,
            buyer_id=get("buyer_id"),
            buyer_name=get("buyer_name"),
        )
    if document_type == "810":
        return InvoiceHeader(
            invoice_number=get("invoice_number") or record_number,
            invoice_date=get("invoice_date") or None,
            po_number=get("po_number"),
            total_amount=first.get("total_amount"),
        )
    if document_type == "856":
        return ShipNoticeHeader(
            shipment_id=get("shipment_id") or record_number,
            ship_date=get("ship_date") or None,
            ship_time=get("ship_time") or None,
            po_number=get("po_number"),
            carrier=get("carrier"),
        )
    if document_type == "997":
        return AcknowledgmentHeader(
            functional_code=get("functional_code"),
            group_control_number=get("group_control_number"),
            accepted=get("group_status") != "R",
        )
    raise TransformError(f"No X12 builder for document type {document_type}")


def build_transaction_set(
    document_type: str,
    rows: list[Mapping[str, Any]],
    record_number: str = "",
    delimiters: Delimiters = DEFAULT_DELIMITERS,
) -> list[str]:
    builder = BUILDERS.get(document_type)
    if builder is None:
        raise TransformError(f"No X12 builder for document type {document_type}")
    return builder(header_from_rows(document_type, rows, record_number), list(rows), delimiters)
