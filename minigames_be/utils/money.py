from decimal import Decimal, ROUND_DOWN, InvalidOperation

CENT = Decimal('0.01')


def to_amount(value) -> Decimal:
    """Coerce a number or numeric string to a Decimal currency amount (2 places, truncated)."""
    if isinstance(value, float):
        value = repr(value)
    try:
        return Decimal(value).quantize(CENT, rounding=ROUND_DOWN)
    except (InvalidOperation, TypeError, ValueError):
        raise ValueError(f"Invalid amount: {value!r}")


def scale(stake, multiplier) -> Decimal:
    """stake x multiplier, truncated to the cent so rounding never favours the player."""
    if isinstance(multiplier, float):
        multiplier = repr(multiplier)
    return (Decimal(stake) * Decimal(multiplier)).quantize(CENT, rounding=ROUND_DOWN)
