"""Money helpers."""
from decimal import Decimal, InvalidOperation
from typing import Any

CENT = Decimal("0.01")


def to_money(value: Any) -> Decimal:
    """
    Convert an amount to a two-decimal ``Decimal``.
    Accepts Decimal, int, float, str. Raises ValueError when invalid.
    """
    if isinstance(value, Decimal):
        d = value
    else:
        try:
            # str() avoids binary float artefacts
            d = Decimal(str(value))
        except (InvalidOperation, ValueError, TypeError) as e:
            raise ValueError(f"Invalid money amount: {value!r}") from e
    if not d.is_finite():
        raise ValueError(f"Invalid money amount: {value!r}")
    return d.quantize(CENT)


__all__ = ["CENT", "to_money"]
