"""
X12 Interchange Parser

Turns a raw X12 interchange into a tree:

    Interchange (ISA … IEA)
      └─ FunctionalGroup (GS … GE)
           └─ TransactionSet (ST … SE)
                └─ Segment(id, elements)

Delimiters are never assumed. The ISA segment is fixed-format: the
character right after "ISA" is the element separator, ISA16 is the
component separator, and the character following ISA16 terminates every
segment. They are read from the interchange itself before the rest of
the document is tokenized.

Segments the parser does not model are kept as-is inside their
transaction set; only the envelope segments are interpreted.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

import structlog

from core.errors import MalformedInterchange

logger = structlog.get_logger()

ISA_ELEMENT_COUNT = 16

# Minimum element counts for envelope segments (excluding the segment ID)
REQUIRED_ELEMENTS = {
    "GS": 8,
    "ST": 2,
    "SE": 2,
    "GE": 2,
    "IEA": 2,
}

_SEGMENT_ID = re.compile(r"^[A-Z0-9]{2,3}$")


# ── Tree ──────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Delimiters:
    element: str = "*"
    segment: str = "~"
    component: str = ":"
    repetition: str = "^"

    def strip(self, value: str) -> str:
        """Remove delimiter characters from a value before encoding it."""
        for ch in (self.element, self.segment, self.component):
            value = value.replace(ch, "")
        return value


DEFAULT_DELIMITERS = Delimiters()


@dataclass
class Segment:
    id: str
    elements: list[str] = field(default_factory=list)

    def get(self, position: int, default: str = "") -> str:
        """Element by its X12 position (BEG03 → ``get(3)``), stripped of padding."""
        if position < 1 or position > len(self.elements):
            return default
        return self.elements[position - 1].strip()


@dataclass
class TransactionSet:
    transaction_type: str
    control_number: str
    segments: list[Segment] = field(default_factory=list)
    implementation_reference: str = ""
    declared_segment_count: int | None = None

    def find(self, segment_id: str) -> Segment | None:
        return next((s for s in self.segments if s.id == segment_id), None)

    def find_all(self, segment_id: str) -> list[Segment]:
        return [s for s in self.segments if s.id == segment_id]


@dataclass
class FunctionalGroup:
    functional_code: str
    sender_code: str
    receiver_code: str
    date: str
    time: str
    control_number: str
    responsible_agency: str
    version: str
    transaction_sets: list[TransactionSet] = field(default_factory=list)
    declared_set_count: int | None = None


@dataclass
class Interchange:
    sender_qualifier: str
    sender_id: str
    receiver_qualifier: str
    receiver_id: str
    date: str
    time: str
    version: str
    control_number: str
    acknowledgment_requested: str
    usage_indicator: str
    delimiters: Delimiters
    functional_groups: list[FunctionalGroup] = field(default_factory=list)
    # Interchange-level segments outside any group (e.g. TA1)
    extra_segments: list[Segment] = field(default_factory=list)

    @property
    def transaction_sets(self) -> list[TransactionSet]:
        return [ts for group in self.functional_groups for ts in group.transaction_sets]


# ── Parser ────────────────────────────────────────────────────────────────


class X12Parser:
    """Delimiter-agnostic X12 interchange parser."""

    @staticmethod
    def read_delimiters(raw: str) -> tuple[Delimiters, int]:
        """Return the delimiters declared in the ISA segment and the ISA start offset."""
        start = 0
        while start < len(raw) and raw[start] in "\ufeff \t\r\n":
            start += 1

        if raw[start : start + 3] != "ISA":
            raise MalformedInterchange("Interchange must begin with an ISA segment", 0, start)
        if len(raw) <= start + 3:
            raise MalformedInterchange("ISA segment is truncated", 0, start)

        element = raw[start + 3]
        if element.isalnum() or element.isspace():
            raise MalformedInterchange(f"Invalid element separator {element!r} in ISA", 0, start)

        # The first separator sits right after "ISA"; ISA16 follows the 16th.
        pos = start + 3
        for count in range(1, ISA_ELEMENT_COUNT):
            pos = raw.find(element, pos + 1)
            if pos == -1:
                raise MalformedInterchange(
                    f"ISA segment has {count} of {ISA_ELEMENT_COUNT} elements",
                    0,
                    start,
                )

        component = raw[pos + 1 : pos + 2]
        terminator = raw[pos + 2 : pos + 3]
        if not component or not terminator:
            raise MalformedInterchange("ISA segment is truncated", 0, start)
        if terminator.isalnum() or terminator in (element, component):
            raise MalformedInterchange(f"Invalid segment terminator {terminator!r} in ISA", 0, start)

        # ISA11 is the repetition separator from 00402 onwards, "U" before that
        isa11 = raw[start:pos].split(element)[11]
        repetition = isa11 if len(isa11) == 1 and not isa11.isalnum() else DEFAULT_DELIMITERS.repetition

        return Delimiters(element=element, segment=terminator, component=component, repetition=repetition), start

    @staticmethod
    def tokenize(raw: str, delimiters: Delimiters, start: int = 0):
        """Yield (segment_index, offset, segment_text) in document order."""
        # Line breaks between segments are cosmetic unless one of them is the terminator
        cosmetic = "\r\n".replace(delimiters.segment, "")
        index = 0
        cursor = start
        while cursor < len(raw):
            end = raw.find(delimiters.segment, cursor)
            if end == -1:
                end = len(raw)
            chunk = raw[cursor:end]
            offset = cursor + len(chunk) - len(chunk.lstrip(cosmetic))
            cursor = end + 1

            text = chunk.strip(cosmetic)
            if not text.strip():
                continue
            yield index, offset, text
            index += 1

    @staticmethod
    def parse(raw: str) -> Interchange:
        """Parse a single X12 interchange.

        Raises:
            MalformedInterchange: missing/invalid ISA, envelope segments out
                of order or short of their required elements.
        """
        delimiters, start = X12Parser.read_delimiters(raw)

        interchange: Interchange | None = None
        group: FunctionalGroup | None = None
        txn: TransactionSet | None = None
        closed = False

        for index, offset, text in X12Parser.tokenize(raw, delimiters, start):
            parts = text.split(delimiters.element)
            seg_id = parts[0].strip()
            elements = parts[1:]

            if not _SEGMENT_ID.match(seg_id):
                raise MalformedInterchange(f"Invalid segment identifier {seg_id[:10]!r}", index, offset)
            if closed:
                raise MalformedInterchange(f"Segment {seg_id} found after IEA", index, offset)

            if index == 0:
                if len(elements) != ISA_ELEMENT_COUNT:
                    raise MalformedInterchange(
                        f"ISA segment must have {ISA_ELEMENT_COUNT} elements, found {len(elements)}",
                        index,
                        offset,
                    )
                interchange = _interchange_from_isa(Segment("ISA", elements), delimiters)
                continue

            required = REQUIRED_ELEMENTS.get(seg_id)
            if required is not None and len(elements) < required:
                raise MalformedInterchange(
                    f"{seg_id} segment requires {required} elements, found {len(elements)}",
                    index,
                    offset,
                )
            segment = Segment(seg_id, elements)

            if seg_id == "ISA":
                raise MalformedInterchange("Nested ISA segment; one interchange per document", index, offset)
            elif seg_id == "GS":
                if group is not None:
                    raise MalformedInterchange("GS segment before previous group's GE", index, offset)
                group = FunctionalGroup(
                    functional_code=segment.get(1),
                    sender_code=segment.get(2),
                    receiver_code=segment.get(3),
                    date=segment.get(4),
                    time=segment.get(5),
                    control_number=segment.get(6),
                    responsible_agency=segment.get(7),
                    version=segment.get(8),
                )
            elif seg_id == "ST":
                if group is None:
                    raise MalformedInterchange("ST segment outside of a functional group", index, offset)
                if txn is not None:
                    raise MalformedInterchange("ST segment before previous set's SE", index, offset)
                txn = TransactionSet(
                    transaction_type=segment.get(1),
                    control_number=segment.get(2),
                    implementation_reference=segment.get(3),
                )
            elif seg_id == "SE":
                if txn is None:
                    raise MalformedInterchange("SE segment without matching ST", index, offset)
                txn.declared_segment_count = _as_int(segment.get(1))
                group.transaction_sets.append(txn)
                txn = None
            elif seg_id == "GE":
                if group is None or txn is not None:
                    raise MalformedInterchange("GE segment without a complete functional group", index, offset)
                group.declared_set_count = _as_int(segment.get(1))
                interchange.functional_groups.append(group)
                group = None
            elif seg_id == "IEA":
                if group is not None:
                    raise MalformedInterchange("IEA segment before GE", index, offset)
                closed = True
            elif txn is not None:
                txn.segments.append(segment)
            elif group is not None:
                raise MalformedInterchange(f"Segment {seg_id} outside of a transaction set", index, offset)
            else:
                interchange.extra_segments.append(segment)

        if interchange is None:
            raise MalformedInterchange("Interchange contains no segments", 0, start)
        if txn is not None:
            raise MalformedInterchange(f"Transaction set {txn.control_number} is missing SE", index, len(raw))
        if group is not None:
            raise MalformedInterchange(f"Functional group {group.control_number} is missing GE", index, len(raw))
        if not closed:
            raise MalformedInterchange("Interchange is missing IEA", index, len(raw))

        logger.debug(
            "x12.parsed",
            control_number=interchange.control_number,
            groups=len(interchange.functional_groups),
            transaction_sets=len(interchange.transaction_sets),
        )
        return interchange

    @staticmethod
    def detect_transaction_type(raw: str) -> str | None:
        """Return ST01 of the first transaction set without a full parse."""
        try:
            delimiters, start = X12Parser.read_delimiters(raw)
        except MalformedInterchange:
            return None
        for _, _, text in X12Parser.tokenize(raw, delimiters, start):
            parts = text.split(delimiters.element)
            if parts[0].strip() == "ST" and len(parts) > 1:
                return parts[1].strip() or None
        return None


def _interchange_from_isa(isa: Segment, delimiters: Delimiters) -> Interchange:
    return Interchange(
        sender_qualifier=isa.get(5),
        sender_id=isa.get(6),
        receiver_qualifier=isa.get(7),
        receiver_id=isa.get(8),
        date=isa.get(9),
        time=isa.get(10),
        version=isa.get(12),
        control_number=isa.get(13),
        acknowledgment_requested=isa.get(14),
        usage_indicator=isa.get(15),
        delimiters=delimiters,
    )


def _as_int(value: str) -> int | None:
    try:
        return int(value)
    except ValueError:
        return None
