"""
X12 Envelope Generator

Wraps transaction-set body segments (produced by edi.transaction_sets)
in ISA/GS/ST … SE/GE/IEA. The interchange control number always comes
from the caller, normally the tenant's persistent sequence.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from edi.x12_parser import DEFAULT_DELIMITERS, Delimiters

# GS01 functional identifier per transaction set
FUNCTIONAL_CODES = {
    "850": "PO",
    "855": "PR",
    "810": "IN",
    "856": "SH",
    "997": "FA",
}

MAX_CONTROL_NUMBER = 999_999_999


def functional_code_for(transaction_type: str) -> str:
    return FUNCTIONAL_CODES.get(transaction_type, "ZZ")


@dataclass
class EnvelopeParties:
    """Sender / receiver identifiers for the ISA and GS headers."""

    sender_id: str
    receiver_id: str
    sender_qualifier: str = "ZZ"
    receiver_qualifier: str = "ZZ"
    sender_gs_id: str | None = None
    receiver_gs_id: str | None = None


class X12Generator:
    def __init__(
        self,
        delimiters: Delimiters = DEFAULT_DELIMITERS,
        version: str = "00401",
        group_version: str = "004010",
        usage_indicator: str = "P",
        segment_suffix: str = "\n",
    ):
        self.delimiters = delimiters
        self.version = version
        self.group_version = group_version
        self.usage_indicator = usage_indicator
        # Written after each terminator for readability; ignored by the parser
        self.segment_suffix = segment_suffix

    def segment(self, segment_id: str, *elements) -> str:
        return self.delimiters.element.join([segment_id, *("" if e is None else str(e) for e in elements)])

    def build_interchange(
        self,
        transaction_type: str,
        segments: list[str],
        parties: EnvelopeParties,
        control_number: int,
        now: datetime | None = None,
    ) -> str:
        """Return a complete interchange holding one transaction set."""
        if not 0 < control_number <= MAX_CONTROL_NUMBER:
            raise ValueError(f"Interchange control number out of range: {control_number}")

        now = now or datetime.utcnow()
        isa_control = f"{control_number:09d}"
        set_control = "0001"
        d = self.delimiters

        isa = self.segment(
            "ISA",
            "00",
            " " * 10,
            "00",
            " " * 10,
            _pad(parties.sender_qualifier, 2),
            _pad(d.strip(parties.sender_id), 15),
            _pad(parties.receiver_qualifier, 2),
            _pad(d.strip(parties.receiver_id), 15),
            now.strftime("%y%m%d"),
            now.strftime("%H%M"),
            "U" if self.version == "00401" else d.repetition,
            self.version,
            isa_control,
            "0",
            self.usage_indicator,
            d.component,
        )
        gs = self.segment(
            "GS",
            functional_code_for(transaction_type),
            d.strip(parties.sender_gs_id or parties.sender_id).strip(),
            d.strip(parties.receiver_gs_id or parties.receiver_id).strip(),
            now.strftime("%Y%m%d"),
            now.strftime("%H%M"),
            str(control_number),
            "X",
            self.group_version,
        )
        body = [
            self.segment("ST", transaction_type, set_control),
            *segments,
            self.segment("SE", len(segments) + 2, set_control),
        ]
        trailer = [
            self.segment("GE", 1, control_number),
            self.segment("IEA", 1, isa_control),
        ]

        joiner = d.segment + self.segment_suffix
        return joiner.join([isa, gs, *body, *trailer]) + d.segment


def _pad(value: str, width: int) -> str:
    return (value or "")[:width].ljust(width)
