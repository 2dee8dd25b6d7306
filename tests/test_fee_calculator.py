# tests/test_fee_calculator.py

from __future__ import annotations

from decimal import Decimal

import pytest

from lawpractice.exceptions import ValidationError
from lawpractice.models.enums import CaseType, FeeType
from lawpractice.services.fee_calculator import fee_calculator


def test_hourly_rate_raised_to_minimum() -> None:
    result = fee_calculator.calculate(FeeType.HOURLY, hours=10, rate=150)

    assert result["base_fee"] == Decimal("2000.00")
    assert result["vat_amount"] == Decimal("120.00")
    assert result["total_with_vat"] == Decimal("2120.00")
    assert result["breakdown"]["adjustment"]["reason"] == "Minimum hourly rate"
    assert result["currency"] == "CNY"


def test_contingency_capped_and_needs_court_approval() -> None:
    result = fee_calculator.calculate(FeeType.CONTINGENCY, settlement_amount=2_000_000, percentage=40)

    assert result["base_fee"] == Decimal("600000.00")
    assert result["breakdown"]["adjustment"]["reason"] == "Maximum contingency fee limit"
    assert result["requires_court_approval"] is True
    assert "Written fee agreement required" in result["compliance_notes"]


def test_small_contingency_needs_no_court_approval() -> None:
    result = fee_calculator.calculate(FeeType.CONTINGENCY, settlement_amount=100_000, percentage=20)

    assert result["base_fee"] == Decimal("20000.00")
    assert "adjustment" not in result["breakdown"]
    assert result["requires_court_approval"] is False


def test_flat_fee_with_jurisdiction_and_complexity() -> None:
    result = fee_calculator.calculate(FeeType.FLAT, base_amount=10000, jurisdiction="provincial",
                                      complexity="complex")

    assert result["base_fee"] == Decimal("12000.00")
    assert result["adjusted_fee"] == Decimal("21600.00")
    assert result["vat_amount"] == Decimal("1296.00")
    assert result["total_with_vat"] == Decimal("22896.00")


def test_retainer_requires_trust_account() -> None:
    result = fee_calculator.calculate(FeeType.RETAINER, base_amount=50000)

    assert result["requires_trust_account"] is True
    assert result["breakdown"]["refundable"] is True


def test_unusual_fee_structure_for_case_type_is_noted() -> None:
    result = fee_calculator.calculate(FeeType.HOURLY, case_type=CaseType.MEDICAL_MALPRACTICE.value,
                                      hours=2, rate=500)

    assert any("not a standard structure" in note for note in result["compliance_notes"])


@pytest.mark.parametrize("kwargs", [
    {"fee_type": FeeType.HOURLY, "hours": 5},
    {"fee_type": FeeType.CONTINGENCY, "settlement_amount": 1000},
    {"fee_type": FeeType.FLAT, "base_amount": 0},
    {"fee_type": FeeType.FLAT, "base_amount": 100, "jurisdiction": "galactic"},
    {"fee_type": FeeType.FLAT, "base_amount": 100, "complexity": "epic"},
])
def test_missing_or_invalid_inputs_are_rejected(kwargs) -> None:
    with pytest.raises(ValidationError):
        fee_calculator.calculate(**kwargs)
