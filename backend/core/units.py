"""
Unit conversion table for bar measures.

Every factor is relative to a base unit: ml for volume, g for mass. Count
units ("each", "wedge", "bottle", ...) only convert through the context
ingredient: its custom conversions, its declared unit size, or its purchase
size for "bottle"/"case".

Small bar measures are fixed fractions of a fluid ounce:
    dash      = 1/32 oz  (0.924 ml)
    barspoon  = 1/8 oz   (3.697 ml)
    splash    = 1/4 oz   (7.393 ml)
"top" (top with soda) is a volume of 0 ml.
"""

import logging
import re
from typing import Iterable, Literal, Optional

from pydantic import BaseModel, Field

from core.config import settings
from core.resolver import find_matching_ingredient
from schemas.ingredient import Ingredient

logger = logging.getLogger(__name__)

ML_PER_OZ = 29.5735
G_PER_WEIGHT_OZ = 28.3495

ML_PER_UNIT = {
    "ml": 1.0,
    "cl": 10.0,
    "dl": 100.0,
    "l": 1000.0,
    "oz": ML_PER_OZ,
    "fl oz": ML_PER_OZ,
    "tsp": 4.92892,
    "tbsp": 14.7868,
    "cup": 236.588,
    "pt": 473.176,
    "qt": 946.353,
    "gal": 3785.41,
    "dash": ML_PER_OZ / 32,
    "barspoon": ML_PER_OZ / 8,
    "splash": ML_PER_OZ / 4,
    "top": 0.0,
}

G_PER_UNIT = {
    "mg": 0.001,
    "g": 1.0,
    "kg": 1000.0,
    "lb": 453.592,
    "wt oz": G_PER_WEIGHT_OZ,
}

# Interchangeable 1:1
EACH_UNITS = {"each", "piece", "whole", "unit"}

COUNT_UNITS = EACH_UNITS | {
    "slice",
    "sprig",
    "leaf",
    "wedge",
    "wheel",
    "twist",
    "peel",
    "pinch",
    "drop",
    "spray",
    "bottle",
    "can",
    "case",
    "egg",
}

UNIT_ALIASES = {
    "milliliter": "ml",
    "milliliters": "ml",
    "millilitre": "ml",
    "mls": "ml",
    "centiliter": "cl",
    "centiliters": "cl",
    "liter": "l",
    "liters": "l",
    "litre": "l",
    "litres": "l",
    "ltr": "l",
    "ounce": "oz",
    "ounces": "oz",
    "ozs": "oz",
    "fl. oz": "fl oz",
    "floz": "fl oz",
    "fl oz.": "fl oz",
    "fluid ounce": "fl oz",
    "fluid ounces": "fl oz",
    "teaspoon": "tsp",
    "teaspoons": "tsp",
    "tablespoon": "tbsp",
    "tablespoons": "tbsp",
    "cups": "cup",
    "pint": "pt",
    "pints": "pt",
    "quart": "qt",
    "quarts": "qt",
    "gallon": "gal",
    "gallons": "gal",
    "dashes": "dash",
    "bar spoon": "barspoon",
    "bar spoons": "barspoon",
    "barspoons": "barspoon",
    "bsp": "barspoon",
    "splashes": "splash",
    "gram": "g",
    "grams": "g",
    "gr": "g",
    "kilogram": "kg",
    "kilograms": "kg",
    "kgs": "kg",
    "lbs": "lb",
    "pound": "lb",
    "pounds": "lb",
    "pieces": "piece",
    "pc": "piece",
    "pcs": "piece",
    "ea": "each",
    "units": "unit",
    "slices": "slice",
    "sprigs": "sprig",
    "leaves": "leaf",
    "wedges": "wedge",
    "wheels": "wheel",
    "twists": "twist",
    "peels": "peel",
    "pinches": "pinch",
    "drops": "drop",
    "sprays": "spray",
    "bottles": "bottle",
    "cans": "can",
    "cases": "case",
    "eggs": "egg",
    "egg white": "egg",
    "egg whites": "egg",
}

# Categories whose bare "oz" reads as weight under the "auto" policy
WEIGHT_OZ_CATEGORIES = {"produce", "fruit", "dry_goods", "dry goods", "spice", "sugar", "dairy", "food"}

_SIZE_RE = re.compile(r"(\d*\.?\d+)\s*(ml|l|oz|gallon|gal)", re.IGNORECASE)
_BOTTLE_SIZE_RE = re.compile(r"^([\d.]+)(ml|cl|l|oz|floz)?$")


class UnitPolicy(BaseModel):
    """How ambiguous units are read while costing."""
    oz_interpretation: Literal["fluid", "weight", "auto"] = Field(
        default_factory=lambda: settings.oz_interpretation
        if settings.oz_interpretation in ("fluid", "weight", "auto") else "fluid"
    )
    default_cost_unit: str = Field(default_factory=lambda: settings.default_cost_unit)

    def oz_is_weight(self, ingredient: Optional[Ingredient]) -> bool:
        if self.oz_interpretation == "weight":
            return True
        if self.oz_interpretation == "auto" and ingredient is not None:
            return (ingredient.category or "").strip().lower() in WEIGHT_OZ_CATEGORIES
        return False


def normalize_unit(unit: Optional[str]) -> str:
    u = re.sub(r"\s+", " ", (unit or "").strip().lower())
    return UNIT_ALIASES.get(u, u)


def is_volume_unit(unit: Optional[str]) -> bool:
    return normalize_unit(unit) in ML_PER_UNIT


def is_mass_unit(unit: Optional[str]) -> bool:
    return normalize_unit(unit) in G_PER_UNIT


def is_count_unit(unit: Optional[str]) -> bool:
    return normalize_unit(unit) in COUNT_UNITS


def parse_container_size(container: Optional[str]) -> float:
    """ml held by a container named like "750ml Bottle", "1.75L Handle" or "5 Gallon Bucket"; 0 if unknown."""
    if not container:
        return 0.0
    match = _SIZE_RE.search(container)
    if not match:
        return 0.0
    amount = float(match.group(1))
    unit = match.group(2).lower()
    if unit == "ml":
        return amount
    if unit == "l":
        return amount * 1000.0
    if unit == "oz":
        return amount * ML_PER_OZ
    return amount * ML_PER_UNIT["gal"]


def parse_bottle_size(size) -> Optional[float]:
    if size is None:
        return None
    if isinstance(size, (int, float)):
        return float(size) if size > 0 else None
    s = re.sub(r"\s+", "", str(size).lower())
    match = _BOTTLE_SIZE_RE.match(s)
    if not match:
        return None
    try:
        value = float(match.group(1))
    except ValueError:
        return None
    if value <= 0:
        return None
    unit = match.group(2) or "ml"
    if unit == "floz":
        unit = "oz"
    return value * ML_PER_UNIT[unit]


def ingredient_bottle_size_ml(ingredient: Optional[Ingredient]) -> Optional[float]:
    """ml in one purchase unit ("750 ml", "1 L", ...) of the ingredient, if it is a volume."""
    if ingredient is None:
        return None
    unit = normalize_unit(ingredient.purchase_unit)
    qty = ingredient.purchase_quantity
    if unit in ML_PER_UNIT and ML_PER_UNIT[unit] > 0:
        return (qty if qty and qty > 0 else 1.0) * ML_PER_UNIT[unit]
    # purchase_unit carrying the size itself, e.g. "750ml"
    return parse_bottle_size(ingredient.purchase_unit)


def _custom_factor(ingredient: Optional[Ingredient], from_unit: str, to_unit: str) -> Optional[float]:
    if ingredient is None:
        return None
    for conv in ingredient.custom_conversions:
        if normalize_unit(conv.from_unit) == from_unit and normalize_unit(conv.to_unit) == to_unit:
            return conv.factor
    for conv in ingredient.custom_conversions:
        if normalize_unit(conv.from_unit) == to_unit and normalize_unit(conv.to_unit) == from_unit:
            return 1.0 / conv.factor
    return None


def _density(ingredient: Optional[Ingredient]) -> Optional[float]:
    if ingredient is None or not ingredient.density_g_per_ml or ingredient.density_g_per_ml <= 0:
        return None
    return ingredient.density_g_per_ml


def _standard_ml_per(unit: str, ingredient: Optional[Ingredient], policy: UnitPolicy) -> Optional[float]:
    if unit == "oz" and policy.oz_is_weight(ingredient):
        return None
    return ML_PER_UNIT.get(unit)


def _standard_g_per(unit: str, ingredient: Optional[Ingredient], policy: UnitPolicy) -> Optional[float]:
    if unit == "oz" and policy.oz_is_weight(ingredient):
        return G_PER_WEIGHT_OZ
    return G_PER_UNIT.get(unit)


def _ml_per(unit: str, ingredient: Optional[Ingredient], policy: UnitPolicy) -> Optional[float]:
    ml = _standard_ml_per(unit, ingredient, policy)
    if ml is not None:
        return ml

    # Custom conversion into any volume unit
    if ingredient is not None:
        for conv in ingredient.custom_conversions:
            to_unit = normalize_unit(conv.to_unit)
            from_unit = normalize_unit(conv.from_unit)
            if from_unit == unit and _standard_ml_per(to_unit, ingredient, policy):
                return conv.factor * _standard_ml_per(to_unit, ingredient, policy)
            if to_unit == unit and _standard_ml_per(from_unit, ingredient, policy):
                return _standard_ml_per(from_unit, ingredient, policy) / conv.factor

    if unit == "bottle":
        return ingredient_bottle_size_ml(ingredient)
    if unit == "case":
        size = ingredient_bottle_size_ml(ingredient)
        if size and ingredient.bottles_per_case:
            return size * ingredient.bottles_per_case
        return None
    if unit in EACH_UNITS and ingredient is not None and ingredient.unit_size_ml:
        return ingredient.unit_size_ml

    g = _standard_g_per(unit, ingredient, policy)
    density = _density(ingredient)
    if g is not None and density:
        return g / density
    return None


def _g_per(unit: str, ingredient: Optional[Ingredient], policy: UnitPolicy) -> Optional[float]:
    g = _standard_g_per(unit, ingredient, policy)
    if g is not None:
        return g
    if ingredient is not None:
        for conv in ingredient.custom_conversions:
            to_unit = normalize_unit(conv.to_unit)
            from_unit = normalize_unit(conv.from_unit)
            if from_unit == unit and _standard_g_per(to_unit, ingredient, policy):
                return conv.factor * _standard_g_per(to_unit, ingredient, policy)
            if to_unit == unit and _standard_g_per(from_unit, ingredient, policy):
                return _standard_g_per(from_unit, ingredient, policy) / conv.factor
    density = _density(ingredient)
    if density:
        ml = _ml_per(unit, ingredient, policy)
        if ml is not None:
            return ml * density
    return None


def convert_amount(
    amount,
    from_unit: Optional[str],
    to_unit: Optional[str],
    catalog: Optional[Iterable[Ingredient]] = None,
    context_ingredient_name: Optional[str] = None,
    *,
    ingredient: Optional[Ingredient] = None,
    unit_policy: Optional[UnitPolicy] = None,
) -> Optional[float]:
    """Convert amount between units; None when no conversion path exists.

    The context ingredient is either passed directly or looked up by name in
    the catalog; it supplies custom conversions, density and container sizes.
    """
    if amount is None:
        return None
    try:
        value = float(amount)
    except (TypeError, ValueError):
        return None

    f = normalize_unit(from_unit)
    t = normalize_unit(to_unit)
    if not f or not t:
        return None
    if f == t:
        return value

    if ingredient is None and context_ingredient_name and catalog:
        ingredient = find_matching_ingredient(context_ingredient_name, catalog)
    policy = unit_policy or UnitPolicy()

    factor = _custom_factor(ingredient, f, t)
    if factor is not None:
        return value * factor

    if f in EACH_UNITS and t in EACH_UNITS:
        return value

    ml_from = _ml_per(f, ingredient, policy)
    ml_to = _ml_per(t, ingredient, policy)
    if ml_from is not None and ml_to:
        return value * ml_from / ml_to

    g_from = _g_per(f, ingredient, policy)
    g_to = _g_per(t, ingredient, policy)
    if g_from is not None and g_to:
        return value * g_from / g_to

    logger.debug(
        "No conversion path from %r to %r (ingredient=%r)",
        from_unit, to_unit, getattr(ingredient, "name", context_ingredient_name),
    )
    return None


def convert_to_ml(
    amount,
    unit: Optional[str],
    ingredient: Optional[Ingredient] = None,
    unit_policy: Optional[UnitPolicy] = None,
) -> Optional[float]:
    return convert_amount(amount, unit, "ml", ingredient=ingredient, unit_policy=unit_policy)
