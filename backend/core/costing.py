"""
Recipe costing.

Price priority for a purchased ingredient (first hit wins):
    1. ingredient.cost_per_unit (quoted in cost_unit, default oz)
    2. cheapest product variant with a bottle price, else cheapest case-derived variant
    3. ingredient purchase_price over purchase_quantity/purchase_unit
       (case_price / bottles_per_case first when use_case_pricing is set)
    4. ingredient case_price / bottles_per_case
Nothing found -> the line is "no_cost".

Sub-recipes are costed on their whole-batch total divided by their yield.
The recipes currently being costed are threaded through the recursion as a
frozenset so a loop (A uses B uses A) is reported on the line instead of
recursing forever.
"""

import logging
import re
from typing import Dict, FrozenSet, Iterable, List, NamedTuple, Optional, Tuple

from core.config import settings
from core.exceptions import UnknownCostModeError
from core.resolver import ResolvedLine, resolve_recipe_line
from core.units import (
    UnitPolicy,
    convert_amount,
    ingredient_bottle_size_ml,
    is_count_unit,
    is_mass_unit,
    is_volume_unit,
    normalize_unit,
    parse_bottle_size,
)
from schemas.costing import CostResult, LineCost
from schemas.ingredient import Ingredient, ProductVariant
from schemas.recipe import Recipe, RecipeLine

logger = logging.getLogger(__name__)

# Fillers costed at 0 (and never flagged) when the catalog has no price for them
EXEMPT_INGREDIENTS = [
    "water",
    "filtered water",
    "tap water",
    "distilled water",
    "spring water",
    "sparkling water",
    "soda",
    "soda water",
    "club soda",
    "ice",
    "coconut water",
    "top",
]

VariantsByIngredient = Dict[str, List[ProductVariant]]


class PriceQuote(NamedTuple):
    price: float
    unit: str
    source: str


class _SubRecipeCost(NamedTuple):
    total_cost: float
    yield_amount: float
    yield_unit: str
    fully_costed: bool


class _CostContext:
    """State shared by one top-level calculate_recipe_cost call."""

    def __init__(
        self,
        catalog: List[Ingredient],
        variants_by_ingredient: VariantsByIngredient,
        unit_policy: UnitPolicy,
        all_recipes: List[Recipe],
        allow_recursion: bool,
    ):
        self.catalog = catalog
        self.variants_by_ingredient = variants_by_ingredient
        self.unit_policy = unit_policy
        self.all_recipes = all_recipes
        self.allow_recursion = allow_recursion
        # recipe key -> whole-batch cost, only for cycle-free results
        self.memo: Dict[str, _SubRecipeCost] = {}


def recipe_key(recipe: Recipe) -> str:
    return recipe.id or f"name:{recipe.name.strip().lower()}"


def is_exempt_ingredient(name: Optional[str]) -> bool:
    # whole words only, so "spiced" does not match "ice"
    n = (name or "").strip().lower()
    if not n:
        return False
    return any(re.search(r"\b" + re.escape(ex) + r"\b", n) for ex in EXEMPT_INGREDIENTS)


def index_variants(variants: Iterable[ProductVariant]) -> VariantsByIngredient:
    out: VariantsByIngredient = {}
    for v in variants or []:
        out.setdefault(v.ingredient_id, []).append(v)
    return out


# ---------------------------------------------------------------------------
# Pricing
# ---------------------------------------------------------------------------

def variant_price_per_ml(variant: ProductVariant) -> Tuple[Optional[float], Optional[str]]:
    """(price per ml, "bottle_price" | "case_price"), or (None, None) if the variant can't be priced."""
    size = variant.size_ml or 0
    if size <= 0:
        return None, None
    if variant.purchase_price and variant.purchase_price > 0:
        return variant.purchase_price / size, "bottle_price"
    if variant.case_price and variant.case_price > 0 and variant.bottles_per_case and variant.bottles_per_case > 0:
        return (variant.case_price / variant.bottles_per_case) / size, "case_price"
    return None, None


def best_variant(variants: Iterable[ProductVariant]) -> Optional[Tuple[ProductVariant, float]]:
    """Cheapest variant per ml, preferring bottle-priced variants over case-derived ones."""
    bottle_priced: List[Tuple[ProductVariant, float]] = []
    case_priced: List[Tuple[ProductVariant, float]] = []
    for v in variants or []:
        per_ml, basis = variant_price_per_ml(v)
        if per_ml is None:
            continue
        if basis == "bottle_price":
            bottle_priced.append((v, per_ml))
        else:
            case_priced.append((v, per_ml))
    pool = bottle_priced or case_priced
    if not pool:
        return None
    # min() keeps the first of equal prices, so ties follow catalog order
    return min(pool, key=lambda pair: pair[1])


def _quote_per_purchase_unit(ingredient: Ingredient, price: float, source: str) -> PriceQuote:
    unit = normalize_unit(ingredient.purchase_unit)
    qty = ingredient.purchase_quantity if ingredient.purchase_quantity and ingredient.purchase_quantity > 0 else 1.0
    if unit and (is_volume_unit(unit) or is_mass_unit(unit) or is_count_unit(unit)):
        return PriceQuote(price / qty, unit, source)
    size = parse_bottle_size(ingredient.purchase_unit)
    if size:
        return PriceQuote(price / size, "ml", source)
    # Unknown container: priced per bottle
    return PriceQuote(price / qty, "bottle", source)


def _case_quote(ingredient: Ingredient) -> Optional[PriceQuote]:
    if ingredient.case_price and ingredient.case_price > 0 and ingredient.bottles_per_case and ingredient.bottles_per_case > 0:
        per_bottle = ingredient.case_price / ingredient.bottles_per_case
        size = ingredient_bottle_size_ml(ingredient)
        if size:
            return PriceQuote(per_bottle / size, "ml", "case_price")
        return PriceQuote(per_bottle, "bottle", "case_price")
    return None


def ingredient_price_quote(
    ingredient: Ingredient,
    variants_by_ingredient: Optional[VariantsByIngredient] = None,
    unit_policy: Optional[UnitPolicy] = None,
) -> Optional[PriceQuote]:
    policy = unit_policy or UnitPolicy()

    if ingredient.cost_per_unit and ingredient.cost_per_unit > 0:
        return PriceQuote(
            ingredient.cost_per_unit,
            normalize_unit(ingredient.cost_unit or policy.default_cost_unit),
            "cost_per_unit",
        )

    if ingredient.id and variants_by_ingredient:
        picked = best_variant(variants_by_ingredient.get(ingredient.id, []))
        if picked is not None:
            return PriceQuote(picked[1], "ml", "variant")

    if ingredient.use_case_pricing:
        quote = _case_quote(ingredient)
        if quote is not None:
            return quote

    if ingredient.purchase_price and ingredient.purchase_price > 0:
        return _quote_per_purchase_unit(ingredient, ingredient.purchase_price, "bottle_price")

    return _case_quote(ingredient)


# ---------------------------------------------------------------------------
# Line costing
# ---------------------------------------------------------------------------

def _line_cost(line: RecipeLine, resolved: ResolvedLine, **fields) -> LineCost:
    ingredient = resolved.ingredient
    return LineCost(
        ingredient_name=line.ingredient_name or (ingredient.name if ingredient else ""),
        display_name=resolved.display_name or line.ingredient_name,
        amount=line.amount,
        unit=line.unit,
        ingredient_id=ingredient.id if ingredient is not None else line.ingredient_id,
        prep_action_id=line.prep_action_id,
        **fields,
    )


def _find_sub_recipe(line: RecipeLine, ingredient: Optional[Ingredient], ctx: _CostContext) -> Optional[Recipe]:
    if not ctx.all_recipes:
        return None
    if ingredient is not None and ingredient.sub_recipe_id:
        for r in ctx.all_recipes:
            if r.id == ingredient.sub_recipe_id:
                return r
    names = []
    if ingredient is not None:
        names.append(ingredient.name)
    names.append(line.ingredient_name)
    for name in names:
        wanted = (name or "").strip().lower()
        if not wanted:
            continue
        matches = [r for r in ctx.all_recipes if r.name.strip().lower() == wanted]
        if matches:
            # a house syrup beats a menu drink of the same name
            return next((r for r in matches if r.is_sub_recipe), matches[0])
    return None


def _cost_sub_recipe_line(
    line: RecipeLine,
    resolved: ResolvedLine,
    sub: Recipe,
    ctx: _CostContext,
    visiting: FrozenSet[str],
    amount_ml: Optional[float],
) -> Tuple[LineCost, bool]:
    """Cost a line that points at another recipe. Returns (line cost, hit a cycle)."""
    key = recipe_key(sub)
    base = dict(is_sub_recipe_line=True, source_sub_recipe_id=sub.id, amount_ml=amount_ml)

    if key in visiting:
        logger.warning("Sub-recipe cycle: %r is already being costed", sub.name)
        return _line_cost(
            line, resolved, cost=0.0, cost_status="cycle_error",
            message=f"Sub-recipe '{sub.name}' refers back to a recipe already being costed",
            **base,
        ), True

    sub_cost = ctx.memo.get(key)
    if sub_cost is None:
        sub_result, had_cycle = _cost_recipe(sub, ctx, visiting | {key})
        if had_cycle:
            return _line_cost(
                line, resolved, cost=0.0, cost_status="cycle_error",
                message=f"Sub-recipe '{sub.name}' is part of a cycle",
                **base,
            ), True
        sub_cost = _SubRecipeCost(
            total_cost=sub_result.total_cost,
            yield_amount=sub.yield_total_amount or 0.0,
            yield_unit=sub.yield_total_unit or "ml",
            fully_costed=not sub_result.flagged_lines,
        )
        ctx.memo[key] = sub_cost

    if sub_cost.yield_amount <= 0:
        return _line_cost(
            line, resolved, cost=0.0, cost_status="no_cost", price_source="sub_recipe",
            message=f"Sub-recipe '{sub.name}' has no yield",
            **base,
        ), False

    if sub_cost.total_cost <= 0 and not sub_cost.fully_costed:
        return _line_cost(
            line, resolved, cost=0.0, cost_status="no_cost", price_source="sub_recipe",
            message=f"Sub-recipe '{sub.name}' has no priced ingredients",
            **base,
        ), False

    used = convert_amount(
        line.amount, line.unit, sub_cost.yield_unit,
        ingredient=resolved.ingredient, unit_policy=ctx.unit_policy,
    )
    if used is None:
        return _line_cost(
            line, resolved, cost=0.0, cost_status="unconvertible_unit", price_source="sub_recipe",
            message=f"Cannot convert {line.unit} to {sub_cost.yield_unit}",
            **base,
        ), False

    cost = sub_cost.total_cost / sub_cost.yield_amount * used
    return _line_cost(line, resolved, cost=cost, cost_status="ok", price_source="sub_recipe", **base), False


def _cost_line(line: RecipeLine, ctx: _CostContext, visiting: FrozenSet[str]) -> Tuple[LineCost, bool]:
    resolved = resolve_recipe_line(line, ctx.catalog)
    ingredient = resolved.ingredient

    amount_ml = convert_amount(line.amount, line.unit, "ml", ingredient=ingredient, unit_policy=ctx.unit_policy)

    if ingredient is None:
        if is_exempt_ingredient(line.ingredient_name):
            return _line_cost(line, resolved, cost=0.0, is_exempt=True, price_source="exempt", amount_ml=amount_ml), False
        if ctx.allow_recursion:
            sub = _find_sub_recipe(line, None, ctx)
            if sub is not None:
                return _cost_sub_recipe_line(line, resolved, sub, ctx, visiting, amount_ml)
        logger.warning("Recipe line %r not found in catalog", line.ingredient_name)
        return _line_cost(line, resolved, cost=0.0, cost_status="not_found", amount_ml=amount_ml), False

    if resolved.invalid_prep_action:
        return _line_cost(
            line, resolved, cost=0.0, cost_status="invalid_prep_action", amount_ml=amount_ml,
            message=f"Prep action {line.prep_action_id} not defined on {ingredient.name}",
        ), False

    if ctx.allow_recursion:
        sub = _find_sub_recipe(line, ingredient, ctx)
        if sub is not None:
            return _cost_sub_recipe_line(line, resolved, sub, ctx, visiting, amount_ml)

    quote = ingredient_price_quote(ingredient, ctx.variants_by_ingredient, ctx.unit_policy)
    # unpriced fillers (water, soda, ice) are free; a priced tonic water is not
    if quote is None and is_exempt_ingredient(ingredient.name):
        return _line_cost(line, resolved, cost=0.0, is_exempt=True, price_source="exempt", amount_ml=amount_ml), False
    if quote is None:
        return _line_cost(
            line, resolved, cost=0.0, cost_status="no_cost", amount_ml=amount_ml,
            message=f"No price for {ingredient.name}",
        ), False

    prep = resolved.prep_action
    if prep is not None and prep.yield_amount and prep.yield_amount > 0 and prep.yield_unit:
        # yield is per priced unit of the raw ingredient (1 lime -> 1 oz juice)
        in_yield_unit = convert_amount(
            line.amount, line.unit, prep.yield_unit, ingredient=ingredient, unit_policy=ctx.unit_policy,
        )
        if in_yield_unit is None:
            return _line_cost(
                line, resolved, cost=0.0, cost_status="unconvertible_unit", amount_ml=amount_ml,
                message=f"Cannot convert {line.unit} to {prep.yield_unit}",
            ), False
        raw_units = in_yield_unit / prep.yield_amount
        return _line_cost(
            line, resolved, cost=quote.price * raw_units, price_source="prep_action_yield", amount_ml=amount_ml,
        ), False

    converted = convert_amount(line.amount, line.unit, quote.unit, ingredient=ingredient, unit_policy=ctx.unit_policy)
    if converted is None:
        logger.warning("Cannot convert %s %s of %r into %s", line.amount, line.unit, ingredient.name, quote.unit)
        return _line_cost(
            line, resolved, cost=0.0, cost_status="unconvertible_unit", price_source=quote.source,
            amount_ml=amount_ml, message=f"Cannot convert {line.unit} to {quote.unit}",
        ), False

    return _line_cost(
        line, resolved, cost=quote.price * converted, price_source=quote.source, amount_ml=amount_ml,
    ), False


def _cost_recipe(recipe: Recipe, ctx: _CostContext, visiting: FrozenSet[str]) -> Tuple[CostResult, bool]:
    lines: List[LineCost] = []
    had_cycle = False
    for line in recipe.ingredients:
        line_cost, cycle = _cost_line(line, ctx, visiting)
        lines.append(line_cost)
        had_cycle = had_cycle or cycle
    result = CostResult(
        recipe_id=recipe.id,
        recipe_name=recipe.name,
        mode="total",
        total_cost=sum(lc.cost for lc in lines),
        ingredients_with_cost=lines,
        total_yield=recipe.yield_total_amount or 0.0,
    )
    return result, had_cycle


def servings_per_yield(recipe: Recipe, unit_policy: Optional[UnitPolicy] = None) -> Optional[float]:
    """Number of servings in one full yield, or None if either side is missing/unconvertible."""
    if not recipe.yield_total_amount or not recipe.serving_size_amount:
        return None
    yield_ml = convert_amount(recipe.yield_total_amount, recipe.yield_total_unit or "ml", "ml", unit_policy=unit_policy)
    serving_ml = convert_amount(recipe.serving_size_amount, recipe.serving_size_unit or "oz", "ml", unit_policy=unit_policy)
    if not yield_ml or not serving_ml:
        return None
    return yield_ml / serving_ml


def calculate_ingredient_cost(
    line: RecipeLine,
    catalog: Iterable[Ingredient],
    variants_by_ingredient: Optional[VariantsByIngredient] = None,
    unit_policy: Optional[UnitPolicy] = None,
    all_recipes: Optional[Iterable[Recipe]] = None,
) -> LineCost:
    """Cost a single recipe line."""
    ctx = _CostContext(
        catalog=list(catalog or []),
        variants_by_ingredient=variants_by_ingredient or {},
        unit_policy=unit_policy or UnitPolicy(),
        all_recipes=list(all_recipes or []),
        allow_recursion=True,
    )
    line_cost, _ = _cost_line(line, ctx, frozenset())
    return line_cost


def calculate_recipe_cost(
    recipe: Recipe,
    catalog: Iterable[Ingredient],
    mode: str = "total",
    allow_sub_recipe_recursion: bool = True,
    variants_by_ingredient: Optional[VariantsByIngredient] = None,
    unit_policy: Optional[UnitPolicy] = None,
    all_recipes: Optional[Iterable[Recipe]] = None,
) -> CostResult:
    """Cost every line of a recipe and total them.

    Lines that can't be costed are kept with cost 0 and a cost_status other
    than "ok", so the total is a best effort over the priced lines.
    "per_serving" divides every line (and the total) by the number of
    servings in the recipe's yield; recipes without a yield or serving size
    are treated as a single serving.
    """
    if mode not in ("total", "per_serving"):
        raise UnknownCostModeError(mode)

    ctx = _CostContext(
        catalog=list(catalog or []),
        variants_by_ingredient=variants_by_ingredient or {},
        unit_policy=unit_policy or UnitPolicy(),
        all_recipes=list(all_recipes or []),
        allow_recursion=allow_sub_recipe_recursion,
    )
    result, _ = _cost_recipe(recipe, ctx, frozenset({recipe_key(recipe)}))

    if mode == "per_serving":
        servings = servings_per_yield(recipe, ctx.unit_policy)
        if servings is None or servings <= 0:
            logger.debug("Recipe %r has no yield/serving size; per-serving cost equals total", recipe.name)
            servings = 1.0
        lines = [lc.model_copy(update={"cost": lc.cost / servings}) for lc in result.ingredients_with_cost]
        result = result.model_copy(update={
            "mode": "per_serving",
            "ingredients_with_cost": lines,
            "total_cost": sum(lc.cost for lc in lines),
        })

    return result


# ---------------------------------------------------------------------------
# Pour cost
# ---------------------------------------------------------------------------

def pour_cost_percentage(cost: float, menu_price: float) -> Optional[float]:
    """Cost as a percentage of the menu price (None for a free/unpriced drink)."""
    if not menu_price or menu_price <= 0:
        return None
    return cost / menu_price * 100.0


def suggest_menu_price(cost: float, target_pour_cost_percentage: float = 20.0) -> float:
    target = max(target_pour_cost_percentage, 1.0)
    return round(cost / (target / 100.0), 2)


# ---------------------------------------------------------------------------
# ABV
# ---------------------------------------------------------------------------

ALCOHOLIC_CATEGORIES = {"spirit", "liquor", "liqueur", "vermouth", "wine", "beer", "bitters"}


def is_alcoholic_ingredient(ingredient: Optional[Ingredient]) -> bool:
    if ingredient is None:
        return False
    return ingredient.abv > 0 or (ingredient.category or "").strip().lower() in ALCOHOLIC_CATEGORIES


def _recipe_alcohol(
    recipe: Recipe,
    catalog: List[Ingredient],
    all_recipes: List[Recipe],
    policy: UnitPolicy,
    visiting: FrozenSet[str],
) -> Tuple[float, float]:
    """(alcohol ml, volume ml) for one full recipe."""
    is_wash = (recipe.category or "").strip().lower() == "wash"
    alcohol_ml = 0.0
    volume_ml = 0.0
    for line in recipe.ingredients:
        if line.amount <= 0:
            continue
        resolved = resolve_recipe_line(line, catalog)
        ingredient = resolved.ingredient
        ml = convert_amount(line.amount, line.unit, "ml", ingredient=ingredient, unit_policy=policy)
        if not ml or ml <= 0:
            continue

        abv = ingredient.abv if ingredient is not None else 0.0
        sub = None
        if ingredient is not None and ingredient.sub_recipe_id:
            sub = next((r for r in all_recipes if r.id == ingredient.sub_recipe_id), None)
        if sub is not None:
            key = recipe_key(sub)
            if key in visiting:
                logger.warning("Sub-recipe cycle while computing ABV of %r", recipe.name)
                continue
            sub_alcohol, sub_volume = _recipe_alcohol(sub, catalog, all_recipes, policy, visiting | {key})
            abv = (sub_alcohol / sub_volume * 100.0) if sub_volume > 0 else 0.0

        if not is_wash or is_alcoholic_ingredient(ingredient):
            volume_ml += ml
        alcohol_ml += ml * abv / 100.0
    return alcohol_ml, volume_ml


def calculate_recipe_abv(
    recipe: Recipe,
    catalog: Iterable[Ingredient],
    all_recipes: Optional[Iterable[Recipe]] = None,
    dilution_percentage: float = 0.0,
    unit_policy: Optional[UnitPolicy] = None,
) -> float:
    """Volume-weighted ABV (percent, one decimal) of a recipe.

    dilution_percentage is the share of the final volume that is water.
    """
    alcohol_ml, volume_ml = _recipe_alcohol(
        recipe,
        list(catalog or []),
        list(all_recipes or []),
        unit_policy or UnitPolicy(),
        frozenset({recipe_key(recipe)}),
    )
    if volume_ml <= 0:
        return 0.0
    abv = alcohol_ml / volume_ml * 100.0
    dilution = min(max(dilution_percentage or 0.0, 0.0), 100.0)
    abv *= 1.0 - dilution / 100.0
    return round(abv, 1)


def costs_are_conserved(result: CostResult, epsilon: Optional[float] = None) -> bool:
    eps = settings.epsilon if epsilon is None else epsilon
    return abs(sum(lc.cost for lc in result.ingredients_with_cost) - result.total_cost) <= eps
