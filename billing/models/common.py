from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Literal
import re
import uuid

CustomerKind = Literal["company", "individual"]

FILS_PER_AED = 100


def gen_id() -> str:
    return str(uuid.uuid4())


def to_decimal(val: Any) -> Decimal:
    """Accepts Decimal, int, str ("5", "5,5") or float (via str, never binary)."""
    if isinstance(val, Decimal):
        return val
    if val is None or val == "":
        return Decimal(0)
    s = str(val).strip().replace(",", ".")
    try:
        return Decimal(s)
    except InvalidOperation as e:
        raise ValueError(f"not a number: {val!r}") from e


def round_fils(value: Decimal) -> int:
    return int(value.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def aed_to_fils(val: Any) -> int:
    """ "18,50" / "AED 18.50" / 18.5 -> 1850 """
    if isinstance(val, int):
        return val * FILS_PER_AED
    s = re.sub(r"[^0-9,.\-]", "", str(val or ""))
    return round_fils(to_decimal(s) * FILS_PER_AED)


def fils_to_aed(fils: int, currency: str = "AED") -> str:
    try:
        amount = Decimal(int(fils)) / FILS_PER_AED
    except (TypeError, ValueError):
        amount = Decimal(0)
    return f"{currency} {amount:,.2f}"
