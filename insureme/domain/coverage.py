"""
Coverage arithmetic shared by the menu flow and the ledger
"""
from decimal import Decimal, ROUND_HALF_UP

CENT = Decimal("0.01")


def calculate_coverage(premium: Decimal, multiplier: Decimal, max_coverage: Decimal) -> Decimal:
    """coverage = min(premium * multiplier, max_coverage)"""
    coverage = Decimal(premium) * Decimal(multiplier)
    return min(coverage, Decimal(max_coverage)).quantize(CENT, rounding=ROUND_HALF_UP)


def premium_in_range(premium: Decimal, min_premium: Decimal, max_premium: Decimal) -> bool:
    return Decimal(min_premium) <= Decimal(premium) <= Decimal(max_premium)


def format_amount(amount: Decimal | int | float | str) -> str:
    """150 -> '150', 150.5 -> '150.50'"""
    value = Decimal(str(amount))
    if value == value.to_integral_value():
        return str(int(value))
    return str(value.quantize(CENT, rounding=ROUND_HALF_UP))
