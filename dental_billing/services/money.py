# Integer rupiah helpers shared by the pricing and voucher engines.
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation

HUNDRED = Decimal("100")


def to_decimal(value) -> Decimal:
    if value is None:
        return Decimal("0")
    if not isinstance(value, Decimal):
        try:
            value = Decimal(str(value))
        except InvalidOperation:
            return Decimal("0")
    # NaN and infinity count as no amount
    if not value.is_finite():
        return Decimal("0")
    return value


def to_units(value) -> int:
    """Round to whole rupiah, half away from zero."""
    return int(to_decimal(value).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def percent_of(amount: int, percentage) -> int:
    # single rounding step so repeated recomputation never drifts
    return to_units(Decimal(int(amount)) * to_decimal(percentage) / HUNDRED)


def clamp(value, lower, upper):
    return max(lower, min(value, upper))


def format_rupiah(amount: int) -> str:
    sign = "-" if amount < 0 else ""
    return f"{sign}Rp {abs(int(amount)):,}".replace(",", ".")
