"""
Charge calculation: service selection -> itemized, VAT-bearing charge lines.

Pure functions, no storage access. Amounts are integer fils; VAT is rounded
half-up to the nearest fil.

VAT modes:
- ``service_charge``: VAT on the typing charge, after the discount is absorbed
  by the typing charge (at most the whole typing charge). Government fees are
  never taxed and any discount left over does not shrink the VAT base again.
- ``total_amount``: VAT on the discounted total.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence, Tuple

from billing.errors import ChargeValidationError
from billing.models.billing import ServiceCharge, VatAppliesTo
from billing.models.common import round_fils, to_decimal
from billing.models.service import ServiceType

VAT_MODES = ("service_charge", "total_amount")


def split_evenly(total_fils: int, parts: int) -> List[int]:
    """Even split; leftover fils go to the first shares so the sum is exact."""
    if parts <= 0:
        return []
    base, rest = divmod(total_fils, parts)
    return [base + (1 if i < rest else 0) for i in range(parts)]


def vat_on(base_fils: int, vat_pct: Decimal) -> int:
    return round_fils(Decimal(base_fils) * vat_pct / 100)


def _check_inputs(quantity: Any, discount_fils: Any, vat_pct: Any, vat_applies_to: Any,
                  overrides: Tuple[Optional[int], Optional[int]]) -> Decimal:
    errors: Dict[str, str] = {}
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        errors["quantity"] = "must be a positive whole number"
    if isinstance(discount_fils, bool) or not isinstance(discount_fils, int) or discount_fils < 0:
        errors["discount"] = "must be zero or more"
    pct = Decimal(0)
    try:
        pct = to_decimal(vat_pct)
        if not pct.is_finite():
            errors["vat_percentage"] = "must be a number"
        elif pct < 0:
            errors["vat_percentage"] = "must be zero or more"
    except ValueError:
        errors["vat_percentage"] = "must be a number"
    if vat_applies_to not in VAT_MODES:
        errors["vat_applies_to"] = f"must be one of {', '.join(VAT_MODES)}"
    for name, val in zip(("typing_override", "government_override"), overrides):
        if val is not None and (isinstance(val, bool) or not isinstance(val, int) or val < 0):
            errors[name] = "must be zero or more"
    if errors:
        raise ChargeValidationError(errors)
    return pct


def compute_charge(
    service: ServiceType,
    quantity: int,
    typing_override_fils: Optional[int] = None,
    government_override_fils: Optional[int] = None,
    discount_fils: int = 0,
    vat_pct: Any = 0,
    vat_applies_to: VatAppliesTo = "service_charge",
    vendor_cost_fils: int = 0,
) -> ServiceCharge:
    """
    Price one service line.

    Overrides replace the whole typing / government amount for the line
    (negotiated one-off rates); otherwise unit charge * quantity is used.
    """
    pct = _check_inputs(quantity, discount_fils, vat_pct, vat_applies_to,
                        (typing_override_fils, government_override_fils))

    typing = typing_override_fils if typing_override_fils is not None else service.typing_charge_fils * quantity
    government = (
        government_override_fils if government_override_fils is not None
        else service.government_charge_fils * quantity
    )
    subtotal = typing + government
    total = max(0, subtotal - discount_fils)

    if vat_applies_to == "service_charge":
        vat_base = typing - min(discount_fils, typing)
    else:
        vat_base = total
    vat = vat_on(vat_base, pct)

    return ServiceCharge(
        service_id=service.id,
        label=service.name,
        quantity=quantity,
        unit_typing_fils=service.typing_charge_fils if typing_override_fils is None else None,
        unit_government_fils=service.government_charge_fils if government_override_fils is None else None,
        typing_fils=typing,
        government_fils=government,
        discount_fils=discount_fils,
        vendor_cost_fils=vendor_cost_fils,
        vat_pct=pct,
        vat_applies_to=vat_applies_to,
        subtotal_fils=subtotal,
        total_fils=total,
        vat_fils=vat,
        total_with_vat_fils=total + vat,
    )


def compute_lines(
    items: Sequence[Tuple[ServiceType, int, Optional[int], Optional[int]]],
    discount_fils: int = 0,
    vat_pct: Any = 0,
    vat_applies_to: VatAppliesTo = "service_charge",
    vendor_cost_fils: int = 0,
) -> List[ServiceCharge]:
    """
    Multi-service pricing. ``items`` are (service, quantity, typing override,
    government override). The billing-level discount and vendor cost are
    shared evenly across lines; each line gets its own VAT from its share.
    """
    if not items:
        raise ChargeValidationError({"items": "at least one service is required"})
    errors: Dict[str, str] = {}
    if isinstance(discount_fils, bool) or not isinstance(discount_fils, int) or discount_fils < 0:
        errors["discount"] = "must be zero or more"
    if isinstance(vendor_cost_fils, bool) or not isinstance(vendor_cost_fils, int) or vendor_cost_fils < 0:
        errors["vendor_cost"] = "must be zero or more"
    if errors:
        raise ChargeValidationError(errors)

    discounts = split_evenly(discount_fils, len(items))
    costs = split_evenly(vendor_cost_fils, len(items))
    lines: List[ServiceCharge] = []
    for idx, (service, qty, typing_ov, gov_ov) in enumerate(items):
        try:
            lines.append(compute_charge(
                service, qty, typing_ov, gov_ov,
                discount_fils=discounts[idx], vat_pct=vat_pct,
                vat_applies_to=vat_applies_to, vendor_cost_fils=costs[idx],
            ))
        except ChargeValidationError as e:
            if len(items) == 1:
                raise
            raise ChargeValidationError({f"items[{idx}].{k}": v for k, v in e.errors.items()}) from e
    return lines
