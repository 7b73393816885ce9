import math
from decimal import Decimal, InvalidOperation
from fractions import Fraction
from typing import Optional, Union

UNITS = ["g", "kg", "L", "mL", "cl", "unité", "pincée", "càs", "càc", "bouquet"]
DEFAULT_UNIT = "g"
DEFAULT_CATEGORY = "Autre"

# Small unit alias map: variant -> canonical
UNIT_ALIASES = {
    "gr": "g",
    "gramme": "g",
    "grammes": "g",
    "l": "L",
    "litre": "L",
    "litres": "L",
    "ml": "mL",
    "cs": "càs",
    "cas": "càs",
    "cc": "càc",
    "cac": "càc",
    "pincées": "pincée",
    "unite": "unité",
    "unités": "unité",
    "pièce": "unité",
    "piece": "unité",
}

Quantity = Union[int, float, str, None]


def normalize_unit(unit: Optional[str]) -> str:
    if unit is None:
        return DEFAULT_UNIT
    u = unit.strip()
    if not u:
        return DEFAULT_UNIT
    if u in UNITS:
        return u
    return UNIT_ALIASES.get(u.lower(), u)


def parse_quantity(value: Quantity) -> Optional[float]:
    """Parse a form quantity into a number, or ``None`` when left blank.

    Accepts plain numbers, French decimal commas (``"0,5"``), simple
    fractions (``"1/2"``) and mixed numbers (``"1 1/2"``). Raises
    :class:`ValueError` for anything else.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValueError(f"invalid quantity: {value!r}")
    if isinstance(value, (int, float)):
        number = float(value)
        if not math.isfinite(number):
            raise ValueError(f"invalid quantity: {value!r}")
        return number
    text = str(value).strip().replace(",", ".")
    if not text:
        return None
    try:
        parts = text.split()
        if len(parts) == 2 and "/" in parts[1]:
            number = float(Fraction(parts[0]) + Fraction(parts[1]))
        elif "/" in text:
            number = float(Fraction(text))
        else:
            number = float(Decimal(text))
    except (InvalidOperation, ValueError, ZeroDivisionError):
        raise ValueError(f"invalid quantity: {value!r}") from None
    if not math.isfinite(number):
        raise ValueError(f"invalid quantity: {value!r}")
    return number


def scale_quantity(
    value: Optional[float], servings: int, base_servings: int
) -> Optional[float]:
    if value is None:
        return None
    base = max(1, int(base_servings or 1))
    return round(float(value) * servings / base, 2)
