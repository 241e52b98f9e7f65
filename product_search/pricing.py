"""Packaging price derivation and promotion placement.

A packaging option stores each price of the list/retail/sale triple either
as a package total (``list``) or as a per-unit value (``list_unit``). The
missing side is derived here; values that were stored are never recomputed.
"""
from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Iterable, List, Optional

PRICE_KINDS = ("list", "retail", "sale")
DISCOUNT_FIELDS = ("list_discount_pct", "sale_discount_pct")


def round2(value: float) -> float:
    """Round half up to cents (``2.675 -> 2.68``), unlike the builtin ``round``."""
    return float(Decimal(str(value)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def unit_from_total(total: Optional[float], qty: Optional[float]) -> Optional[float]:
    if total is None or not qty or qty <= 0:
        return None
    return round2(total / qty)


def total_from_unit(unit: Optional[float], qty: Optional[float]) -> Optional[float]:
    if unit is None or qty is None:
        return None
    return round2(unit * qty)


def derive_prices(pricing: Dict[str, Any], qty: Optional[float]) -> Dict[str, Any]:
    """Fill the missing side of every price triple."""
    derived = dict(pricing)
    for kind in PRICE_KINDS:
        unit_key = f"{kind}_unit"
        total = pricing.get(kind)
        unit = pricing.get(unit_key)
        if total is not None and unit is None:
            unit = unit_from_total(total, qty)
            if unit is not None:
                derived[unit_key] = unit
        elif unit is not None and total is None:
            total = total_from_unit(unit, qty)
            if total is not None:
                derived[kind] = total
    return derived


def format_discount(percentage: float) -> str:
    return f"-{percentage:g}%"


def discount_parts(pricing: Dict[str, Any]) -> List[str]:
    parts = []
    for name in DISCOUNT_FIELDS:
        percentage = pricing.get(name)
        if percentage is not None and percentage > 0:
            parts.append(format_discount(percentage))
    return parts


def discount_label(pricing: Dict[str, Any]) -> Optional[str]:
    """``"-50%"``, or ``"-50% -10%"`` when both list and sale discounts apply."""
    parts = discount_parts(pricing)
    return " ".join(parts) if parts else None


def reprice_promotion(promotion: Dict[str, Any], pricing: Dict[str, Any]) -> Dict[str, Any]:
    """Recompute a percentage promotion against this packaging's list unit price.

    Net-price promotions (no ``discount_percentage``) come back untouched.
    """
    percentage = promotion.get("discount_percentage")
    if percentage is None:
        return promotion

    repriced = dict(promotion)
    list_unit = pricing.get("list_unit")
    if list_unit is not None:
        repriced["promo_price"] = round2(list_unit * (1 - percentage / 100))
    parts = discount_parts(pricing)
    if percentage > 0:
        parts.append(format_discount(percentage))
    repriced["discount_label"] = " ".join(parts) if parts else None
    return repriced


def enrich_packaging_with_unit_prices(
    packaging: Optional[List[Dict[str, Any]]],
) -> Optional[List[Dict[str, Any]]]:
    if not packaging:
        return packaging

    enriched = []
    for option in packaging:
        pricing = option.get("pricing")
        if not isinstance(pricing, dict):
            enriched.append(option)
            continue
        pricing = derive_prices(pricing, option.get("qty"))
        label = discount_label(pricing)
        if label:
            pricing["discount_label"] = label
        updated = {**option, "pricing": pricing}
        if option.get("promotions"):
            updated["promotions"] = [reprice_promotion(promo, pricing) for promo in option["promotions"]]
        enriched.append(updated)
    return enriched


def _targets(promotion: Dict[str, Any], option: Dict[str, Any]) -> bool:
    target_ids = promotion.get("target_pkg_ids")
    if not target_ids:
        return option.get("is_sellable") is not False
    return str(option.get("pkg_id")) in {str(pkg_id) for pkg_id in target_ids}


def embed_promotions_in_packaging(
    packaging: Optional[List[Dict[str, Any]]],
    promotions: Optional[Iterable[Dict[str, Any]]],
) -> Optional[List[Dict[str, Any]]]:
    """Give every packaging option the product promotions that target it.

    A promotion without ``target_pkg_ids`` applies to every sellable option;
    an explicit target list wins over the sellable flag.
    """
    if packaging is None:
        return None
    promotions = list(promotions or [])
    if not promotions:
        return packaging
    return [
        {**option, "promotions": [promo for promo in promotions if _targets(promo, option)]}
        for option in packaging
    ]
