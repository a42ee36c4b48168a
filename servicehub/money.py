from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from servicehub.errors import BadRequestError

CENT = Decimal("0.01")


def to_money(value):
    return Decimal(str(value if value is not None else 0)).quantize(CENT, rounding=ROUND_HALF_UP)


def parse_amount(raw, label="Amount"):
    """Parse a client-supplied amount without rounding it; sub-cent input is rejected."""
    if raw is None or isinstance(raw, bool) or str(raw).strip() == "":
        raise BadRequestError(f"{label} is required.")
    try:
        value = Decimal(str(raw).strip())
    except (InvalidOperation, ValueError) as exc:
        raise BadRequestError(f"{label} must be a number.") from exc
    if not value.is_finite() or value <= 0:
        raise BadRequestError(f"{label} must be greater than zero.")
    try:
        amount = value.quantize(CENT)
    except InvalidOperation as exc:
        raise BadRequestError(f"{label} is too large.") from exc
    if amount != value:
        raise BadRequestError(f"{label} must have at most two decimal places.")
    return amount
