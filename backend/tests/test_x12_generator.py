from datetime import datetime

import pytest

from edi.transaction_sets import AcknowledgmentHeader, build_997
from edi.x12_generator import EnvelopeParties, X12Generator, functional_code_for
from edi.x12_parser import Delimiters, X12Parser

NOW = datetime(2026, 3, 1, 9, 30)


def _parties(**overrides):
    values = {"sender_id": "EDIEXCH", "receiver_id": "ACMEAS2"}
    values.update(overrides)
    return EnvelopeParties(**values)


def test_isa_is_fixed_width():
    content = X12Generator().build_interchange("850", ["BEG*00*NE*PO-1**20260301"], _parties(), 7, now=NOW)
    isa = content.split("~")[0]

    # 3 + 16 separators + fixed element widths + ISA16
    assert len(isa) == 105
    elements = isa.split("*")
    assert elements[6] == "EDIEXCH".ljust(15)
    assert elements[8] == "ACMEAS2".ljust(15)
    assert elements[13] == "000000007"
    assert elements[16] == ":"


def test_envelope_round_trips_through_parser():
    body = ["BEG*00*NE*PO-1**20260301", "PO1*1*2*EA*3*PE*VP*SKU-1"]
    content = X12Generator(usage_indicator="T").build_interchange(
        "850", body, _parties(sender_gs_id="EDIGS"), 123, now=NOW
    )

    interchange = X12Parser.parse(content)
    assert interchange.control_number == "000000123"
    assert interchange.usage_indicator == "T"
    assert interchange.date == "260301"

    group = interchange.functional_groups[0]
    assert group.functional_code == "PO"
    assert group.sender_code == "EDIGS"
    assert group.receiver_code == "ACMEAS2"
    assert group.control_number == "123"
    assert group.version == "004010"

    transaction_set = group.transaction_sets[0]
    assert transaction_set.declared_segment_count == len(body) + 2
    assert [s.id for s in transaction_set.segments] == ["BEG", "PO1"]


def test_custom_delimiters_are_declared_in_isa():
    delimiters = Delimiters(element="|", segment="'", component="^")
    generator = X12Generator(delimiters=delimiters, segment_suffix="")
    content = generator.build_interchange("997", build_997(AcknowledgmentHeader("PO", "42"), [], delimiters), _parties(), 1)

    interchange = X12Parser.parse(content)
    assert interchange.delimiters.element == "|"
    assert interchange.delimiters.segment == "'"
    assert interchange.transaction_sets[0].find("AK1").get(2) == "42"


def test_identifiers_are_stripped_of_delimiters_and_truncated():
    content = X12Generator().build_interchange(
        "810", ["BIG*20260301*INV-1"], _parties(sender_id="ACME*CORP~INTERNATIONAL"), 1, now=NOW
    )
    interchange = X12Parser.parse(content)
    assert interchange.sender_id == "ACMECORPINTERNA"


@pytest.mark.parametrize("control_number", [0, 1_000_000_000])
def test_control_number_range(control_number):
    with pytest.raises(ValueError):
        X12Generator().build_interchange("850", [], _parties(), control_number)


def test_control_number_must_be_supplied():
    with pytest.raises(TypeError):
        X12Generator().build_interchange("850", [], _parties())


def test_functional_codes():
    assert functional_code_for("850") == "PO"
    assert functional_code_for("810") == "IN"
    assert functional_code_for("856") == "SH"
    assert functional_code_for("997") == "FA"
    assert functional_code_for("custom") == "ZZ"
