import logging
from decimal import Decimal
from typing import Any, Dict, Optional

from ..config import settings
from ..exceptions import ValidationError
from ..models.enums import FeeType
from ..utils import money, to_decimal
from .case_validators import case_type_validator

logger = logging.getLogger(__name__)

JURISDICTION_MULTIPLIERS = {
    "local": Decimal("1.0"),
    "provincial": Decimal("1.2"),
    "national": Decimal("1.5"),
}

COMPLEXITY_MULTIPLIERS = {
    "simple": Decimal("1.0"),
    "medium": Decimal("1.3"),
    "complex": Decimal("1.8"),
}


def _required(value, message: str) -> Decimal:
    if value is None or to_decimal(value) <= 0:
        raise ValidationError(message)
    return to_decimal(value)


class FeeCalculator:
    """Legal fee calculation under PRC fee regulations."""

    def calculate(
        self,
        fee_type: FeeType,
        case_type: Optional[str] = None,
        hours=None,
        rate=None,
        settlement_amount=None,
        percentage=None,
        base_amount=None,
        jurisdiction: str = "local",
        complexity: str = "simple",
    ) -> Dict[str, Any]:
        fee_type = FeeType(fee_type)
        breakdown: Dict[str, Any] = {}
        notes = []
        court_approval = False
        trust_account = False

        if jurisdiction not in JURISDICTION_MULTIPLIERS:
            raise ValidationError(f"Unknown jurisdiction: {jurisdiction}")
        if complexity not in COMPLEXITY_MULTIPLIERS:
            raise ValidationError(f"Unknown complexity: {complexity}")

        if fee_type == FeeType.HOURLY:
            hours = _required(hours, "Hours and rate are required for hourly fees")
            rate = _required(rate, "Hours and rate are required for hourly fees")
            minimum = to_decimal(settings.minimum_hourly_rate)
            effective_rate = max(rate, minimum)
            base_fee = hours * effective_rate
            breakdown.update(hours=str(hours), rate=str(effective_rate), base_amount=str(money(base_fee)))
            if rate < minimum:
                breakdown["adjustment"] = {
                    "original_rate": str(rate),
                    "adjusted_rate": str(effective_rate),
                    "reason": "Minimum hourly rate",
                }
                notes.append(f"Hourly rate raised to the minimum of {minimum}")

        elif fee_type == FeeType.CONTINGENCY:
            settlement = _required(settlement_amount,
                                   "Settlement amount and percentage are required for contingency fees")
            percent = _required(percentage, "Settlement amount and percentage are required for contingency fees")
            cap = to_decimal(settings.maximum_contingency_percent)
            effective_percent = min(percent, cap)
            base_fee = settlement * effective_percent / Decimal("100")
            breakdown.update(settlement_amount=str(settlement), percentage=str(effective_percent),
                             base_amount=str(money(base_fee)))
            if percent > cap:
                breakdown["adjustment"] = {
                    "original_percentage": str(percent),
                    "adjusted_percentage": str(effective_percent),
                    "reason": "Maximum contingency fee limit",
                }
                notes.append(f"Contingency percentage capped at {cap}%")
            court_approval = settlement > to_decimal(settings.court_approval_threshold)
            if court_approval:
                notes.append("Court approval required for contingency fee on this settlement")
            notes.append("Written fee agreement required")

        elif fee_type == FeeType.FLAT:
            base = _required(base_amount, "Base amount is required for flat fees")
            multiplier = JURISDICTION_MULTIPLIERS[jurisdiction]
            base_fee = base * multiplier
            breakdown.update(base_amount=str(base), jurisdiction=jurisdiction, multiplier=str(multiplier),
                             final_amount=str(money(base_fee)))

        else:
            base_fee = _required(base_amount, "Base amount is required for retainer fees")
            breakdown.update(retainer_amount=str(base_fee), refundable=True)
            trust_account = True
            notes.append("Retainer must be refundable and held in a trust account")

        complexity_multiplier = COMPLEXITY_MULTIPLIERS[complexity]
        adjusted = money(base_fee * complexity_multiplier)
        breakdown["complexity_adjustment"] = {
            "complexity": complexity,
            "multiplier": str(complexity_multiplier),
            "adjusted_amount": str(adjusted),
        }

        vat_rate = to_decimal(settings.vat_rate)
        vat_amount = money(adjusted * vat_rate)
        total = adjusted + vat_amount

        if case_type and not case_type_validator.supports_fee(case_type, fee_type.value):
            notes.append(f"{fee_type.value} fees are not a standard structure for {case_type} cases")

        return {
            "fee_type": fee_type.value,
            "base_fee": money(base_fee),
            "adjusted_fee": adjusted,
            "vat_rate": vat_rate,
            "vat_amount": vat_amount,
            "total_with_vat": total,
            "currency": settings.currency,
            "breakdown": breakdown,
            "compliance_notes": notes,
            "requires_court_approval": court_approval,
            "requires_trust_account": trust_account,
        }


fee_calculator = FeeCalculator()
