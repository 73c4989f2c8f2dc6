"""
Batch scaling: turn a per-serving recipe into a prep sheet for a container.

Dilution water for dilution_percentage p:

* constrained (water fits inside the container):
      final = target, water = target * p, ingredients = target * (1 - p)
* unconstrained (water goes on top of a full container):
      ingredients = target, water = ingredients * p, final > target
* manual scale factor:
      ingredients = scale * base, water = ingredients * p
"""

import logging
import math
from typing import Dict, Iterable, List, Optional, Tuple

from pydantic import ValidationError

from core.config import settings
from core.costing import VariantsByIngredient, calculate_recipe_cost, is_alcoholic_ingredient
from core.exceptions import BatchConfigError
from core.resolver import resolve_recipe_line
from core.units import UnitPolicy, convert_amount, normalize_unit, parse_container_size
from schemas.batching import BatchConfig, BatchCost, BatchMetrics
from schemas.costing import CostResult
from schemas.ingredient import Ingredient
from schemas.recipe import BatchAssignment, Recipe, RecipeLine

logger = logging.getLogger(__name__)

CONTAINER_SIZES_ML = {
    "375ml Bottle": 375.0,
    "750ml Bottle": 750.0,
    "1L Bottle": 1000.0,
    "1.75L Handle": 1750.0,
    "1 Gallon Cambro": 3785.41,
    "2 Gallon Cambro": 2 * 3785.41,
    "3 Gallon Cambro": 3 * 3785.41,
    "5 Gallon Bucket": 5 * 3785.41,
}

DILUTION_LINE_NAME = "Water (Dilution)"


# ---------------------------------------------------------------------------
# Batch vs service classification
# ---------------------------------------------------------------------------

class BatchClassificationPolicy:
    """Default batch/service assignment for lines the user hasn't overridden.

    Fresh things (juice, citrus, garnish, ice) are added at service, and so is
    any line whose name mentions a citrus fruit. With batch_alcoholic_citrus
    a citrus-named line that resolves to an alcoholic product (orange liqueur)
    stays in the batch.
    """

    SERVICE_CATEGORIES = frozenset({"juice", "citrus", "garnish", "ice"})
    CITRUS_KEYWORDS = ("lemon", "lime", "orange", "grapefruit")

    def __init__(
        self,
        service_categories: Optional[Iterable[str]] = None,
        citrus_keywords: Optional[Iterable[str]] = None,
        batch_alcoholic_citrus: bool = False,
    ):
        self.service_categories = frozenset(
            c.strip().lower() for c in (service_categories if service_categories is not None else self.SERVICE_CATEGORIES)
        )
        self.citrus_keywords = tuple(
            k.strip().lower() for k in (citrus_keywords if citrus_keywords is not None else self.CITRUS_KEYWORDS)
        )
        self.batch_alcoholic_citrus = batch_alcoholic_citrus

    def mentions_citrus(self, name: Optional[str]) -> bool:
        n = (name or "").strip().lower()
        return bool(n) and any(k in n for k in self.citrus_keywords)

    def classify(self, line_name: str, ingredient: Optional[Ingredient]) -> BatchAssignment:
        category = ((ingredient.category if ingredient is not None else None) or "").strip().lower()
        if category in self.service_categories:
            return "service"
        if self.mentions_citrus(line_name):
            if self.batch_alcoholic_citrus and is_alcoholic_ingredient(ingredient):
                return "batch"
            return "service"
        return "batch"


DEFAULT_CLASSIFICATION_POLICY = BatchClassificationPolicy()


def line_key(line: RecipeLine, catalog: Iterable[Ingredient] = ()) -> str:
    """Name a line is keyed by in overrides and volume maps."""
    if line.ingredient_name.strip():
        return line.ingredient_name
    resolved = resolve_recipe_line(line, catalog)
    return resolved.display_name or (line.ingredient_id or "")


def assign_lines(
    recipe: Recipe,
    overrides: Optional[Dict[str, BatchAssignment]],
    catalog: Iterable[Ingredient] = (),
    policy: Optional[BatchClassificationPolicy] = None,
) -> Dict[str, BatchAssignment]:
    """batch/service for every line, explicit overrides first."""
    ingredients = list(catalog or [])
    overrides = overrides or {}
    policy = policy or DEFAULT_CLASSIFICATION_POLICY
    out: Dict[str, BatchAssignment] = {}
    for line in recipe.ingredients:
        key = line_key(line, ingredients)
        if key in out:
            continue
        if key in overrides:
            out[key] = overrides[key]
            continue
        resolved = resolve_recipe_line(line, ingredients)
        out[key] = policy.classify(key, resolved.ingredient)
    return out


# ---------------------------------------------------------------------------
# Volumes
# ---------------------------------------------------------------------------

def per_serving_volumes_ml(
    recipe: Recipe,
    catalog: Iterable[Ingredient] = (),
    unit_policy: Optional[UnitPolicy] = None,
) -> Dict[str, float]:
    """ml of each line for one serving; lines without a volume path count as 0."""
    ingredients = list(catalog or [])
    volumes: Dict[str, float] = {}
    for line in recipe.ingredients:
        key = line_key(line, ingredients)
        resolved = resolve_recipe_line(line, ingredients)
        ml = convert_amount(line.amount, line.unit, "ml", ingredient=resolved.ingredient, unit_policy=unit_policy)
        if ml is None:
            logger.debug("Line %r (%s %s) has no ml equivalent; batching it as 0 ml", key, line.amount, line.unit)
            ml = 0.0
        volumes[key] = volumes.get(key, 0.0) + ml
    return volumes


def volumes_from_cost_result(result: CostResult) -> Dict[str, float]:
    """Per-serving ml map from the cost resolver's line breakdown."""
    volumes: Dict[str, float] = {}
    for lc in result.ingredients_with_cost:
        key = lc.ingredient_name or lc.display_name
        volumes[key] = volumes.get(key, 0.0) + (lc.amount_ml or 0.0)
    return volumes


def container_volume_ml(container_type: Optional[str]) -> float:
    """ml of one standard container; free-text names like "2L Bottle" are parsed; 0 if unknown."""
    name = (container_type or "").strip()
    if not name:
        return 0.0
    for known, ml in CONTAINER_SIZES_ML.items():
        if known.lower() == name.lower():
            return ml
    return parse_container_size(name)


def _clamp(value, low: float, high: Optional[float] = None) -> float:
    if value is None:
        return low
    try:
        v = float(value)
    except (TypeError, ValueError):
        raise BatchConfigError(f"Expected a number, got {value!r}")
    if math.isnan(v):
        return low
    v = max(v, low)
    if high is not None:
        v = min(v, high)
    return v


def _coerce_config(config) -> BatchConfig:
    if isinstance(config, BatchConfig):
        return config
    if isinstance(config, dict):
        try:
            return BatchConfig.model_validate(config)
        except ValidationError as e:
            raise BatchConfigError(f"Invalid batch configuration: {e}") from e
    raise BatchConfigError(f"Batch configuration must be a BatchConfig or dict, got {type(config).__name__}")


def _target_volume_ml(config: BatchConfig, count: float) -> float:
    if config.is_container_custom:
        if config.custom_volume_ml is None:
            if config.scale_factor is None:
                raise BatchConfigError("Custom container requires custom_volume_ml or scale_factor")
            return 0.0
        return _clamp(config.custom_volume_ml, 0.0) * count

    per_container = container_volume_ml(config.container_type)
    if per_container <= 0 and config.scale_factor is None:
        raise BatchConfigError(f"Unknown container type '{config.container_type}'")
    return per_container * count


def _water_for(concentrate_ml: float, dilution_pct: float) -> float:
    if dilution_pct <= 0:
        return 0.0
    return concentrate_ml * dilution_pct / 100.0


def calculate_batch_metrics(config, classification_policy: Optional[BatchClassificationPolicy] = None) -> BatchMetrics:
    """Scale factor, scaled line volumes and dilution water for a batch.

    Raises BatchConfigError for a malformed configuration; a recipe with no
    batched volume returns all zeros with nothing_to_batch set.
    """
    config = _coerce_config(config)
    recipe = config.recipe

    count = _clamp(config.container_count, 0.0)
    dilution_pct = _clamp(config.dilution_percentage, 0.0, 100.0) if config.include_dilution else 0.0
    if config.scale_factor is not None and _clamp(config.scale_factor, -math.inf) < 0:
        raise BatchConfigError("scale_factor must be non-negative")

    assignments = assign_lines(recipe, config.ingredient_overrides, config.all_ingredients, classification_policy)
    batch_lines = [name for name, a in assignments.items() if a == "batch"]
    service_lines = [name for name, a in assignments.items() if a == "service"]

    amounts = config.original_batch_amounts_ml_per_serving
    base_ml = sum(max(amounts.get(name, 0.0) or 0.0, 0.0) for name in batch_lines)
    target_ml = _target_volume_ml(config, count)

    if base_ml <= 0:
        logger.info("Nothing to batch for %r", recipe.name)
        return BatchMetrics(
            target_volume_ml=target_ml,
            container_count=count,
            batch_lines=batch_lines,
            service_lines=service_lines,
            nothing_to_batch=True,
            scale_factor_is_manual=config.scale_factor is not None,
        )

    if config.scale_factor is not None:
        scale = float(config.scale_factor)
        concentrate_ml = scale * base_ml
        water_ml = _water_for(concentrate_ml, dilution_pct)
    elif dilution_pct > 0 and config.constrain_to_total_volume:
        concentrate_ml = target_ml * (1.0 - dilution_pct / 100.0)
        scale = concentrate_ml / base_ml
        water_ml = target_ml - concentrate_ml
    else:
        scale = target_ml / base_ml
        concentrate_ml = target_ml
        water_ml = _water_for(concentrate_ml, dilution_pct)

    scaled = {name: max(amounts.get(name, 0.0) or 0.0, 0.0) * scale for name in batch_lines}
    total_ml = sum(scaled.values()) + water_ml

    overflow = 0.0
    if target_ml > 0 and total_ml - target_ml > settings.epsilon:
        overflow = total_ml - target_ml
        logger.info("Batch of %r overflows %s ml container volume by %.1f ml", recipe.name, target_ml, overflow)

    return BatchMetrics(
        scale_factor=scale,
        total_volume_ml=total_ml,
        dilution_water_ml=water_ml,
        per_ingredient_scaled_ml=scaled,
        base_batch_volume_ml=base_ml,
        concentrate_volume_ml=concentrate_ml,
        target_volume_ml=target_ml,
        container_count=count,
        batch_lines=batch_lines,
        service_lines=service_lines,
        overflow_ml=overflow,
        scale_factor_is_manual=config.scale_factor is not None,
    )


def batch_settings_to_config(
    recipe: Recipe,
    catalog: Iterable[Ingredient] = (),
    unit_policy: Optional[UnitPolicy] = None,
    cost_result: Optional[CostResult] = None,
) -> BatchConfig:
    """BatchConfig from the recipe's saved batch settings (or the configured defaults)."""
    ingredients = list(catalog or [])
    bs = recipe.batch_settings
    if cost_result is not None:
        volumes = volumes_from_cost_result(cost_result)
    else:
        volumes = per_serving_volumes_ml(recipe, ingredients, unit_policy)

    if bs is None:
        return BatchConfig(
            recipe=recipe,
            all_ingredients=ingredients,
            container_type=settings.default_container,
            dilution_percentage=settings.default_dilution_percentage,
            original_batch_amounts_ml_per_serving=volumes,
        )
    return BatchConfig(
        recipe=recipe,
        all_ingredients=ingredients,
        ingredient_overrides=dict(bs.ingredient_overrides),
        container_type=bs.container_type,
        container_count=bs.container_count,
        is_container_custom=bs.is_container_custom,
        custom_volume_ml=bs.custom_volume_ml,
        scale_factor=bs.scale_factor,
        include_dilution=bs.include_dilution,
        dilution_percentage=bs.dilution_percentage,
        constrain_to_total_volume=bs.constrain_to_total_volume,
        original_batch_amounts_ml_per_serving=volumes,
    )


# ---------------------------------------------------------------------------
# Batch cost
# ---------------------------------------------------------------------------

def calculate_batch_cost(
    config,
    metrics: BatchMetrics,
    variants_by_ingredient: Optional[VariantsByIngredient] = None,
    unit_policy: Optional[UnitPolicy] = None,
    all_recipes: Optional[Iterable[Recipe]] = None,
) -> BatchCost:
    """Cost of the batched lines at the batch's scale factor."""
    config = _coerce_config(config)
    if metrics.nothing_to_batch:
        return BatchCost()

    batched = set(metrics.batch_lines)
    lines = [line for line in config.recipe.ingredients if line_key(line, config.all_ingredients) in batched]
    batch_recipe = config.recipe.model_copy(update={"ingredients": lines})
    result = calculate_recipe_cost(
        batch_recipe,
        config.all_ingredients,
        mode="total",
        variants_by_ingredient=variants_by_ingredient,
        unit_policy=unit_policy,
        all_recipes=all_recipes,
    )
    batch_cost = result.total_cost * metrics.scale_factor
    containers = metrics.container_count if metrics.container_count > 0 else 1.0
    return BatchCost(
        batch_cost=batch_cost,
        cost_per_container=batch_cost / containers,
        cost_per_serving=result.total_cost,
        flagged_lines=[lc.ingredient_name for lc in result.flagged_lines],
    )


# ---------------------------------------------------------------------------
# "Easy scale": clean measures search
# ---------------------------------------------------------------------------

WHOLE_NUMBER_BONUS = 10
HALF_NUMBER_BONUS = 5
DEVIATION_PENALTY_MULTIPLIER = 100
CONTAINER_FILL_BONUS = 20
# a candidate is rejected if any line lands more than 8% off a quarter measure
MAX_DEVIATION_PERCENT = 0.08
WHOLE_NUMBER_TOLERANCE = 0.01
HALF_NUMBER_TOLERANCE = 0.01
MIN_SCALE_THRESHOLD = 0.5
CANDIDATE_SEARCH_STEP = 0.5

SMALL_UNITS = {"dash", "drop", "spray", "pinch"}


class _ScalingLine:
    __slots__ = ("name", "original_ml", "target_unit", "ingredient", "is_small")

    def __init__(self, name: str, original_ml: float, target_unit: str, ingredient: Optional[Ingredient]):
        self.name = name
        self.original_ml = original_ml
        self.target_unit = target_unit
        self.ingredient = ingredient
        self.is_small = normalize_unit(target_unit) in SMALL_UNITS

    def in_target_unit(self, ml: float) -> float:
        converted = convert_amount(ml, "ml", self.target_unit, ingredient=self.ingredient)
        return ml if converted is None else converted


def _is_whole(value: float) -> bool:
    return abs(value - round(value)) < WHOLE_NUMBER_TOLERANCE


def _is_half(value: float) -> bool:
    return abs(value % 1 - 0.5) < HALF_NUMBER_TOLERANCE


def _score_line(line: _ScalingLine, scale: float) -> Tuple[float, bool]:
    if line.is_small:
        return 0.0, True
    amount = line.in_target_unit(line.original_ml * scale)
    deviation = abs(amount - round(amount * 4) / 4)
    deviation_pct = deviation / amount if amount > 0 else 0.0
    if amount > 0.5 and deviation_pct > MAX_DEVIATION_PERCENT:
        return 0.0, False
    score = 0.0
    if _is_whole(amount):
        score += WHOLE_NUMBER_BONUS
    elif _is_half(amount):
        score += HALF_NUMBER_BONUS
    score -= deviation_pct * DEVIATION_PENALTY_MULTIPLIER
    return score, True


def _score_scale(lines: List[_ScalingLine], scale: float, max_scale: float) -> Optional[float]:
    total = 0.0
    for line in lines:
        score, valid = _score_line(line, scale)
        if not valid:
            return None
        total += score
    return total + scale / max_scale * CONTAINER_FILL_BONUS


def find_optimal_scale_factor(
    original_amounts_ml: Dict[str, float],
    ingredient_overrides: Dict[str, BatchAssignment],
    batch_ingredient_units: Optional[Dict[str, str]] = None,
    catalog: Iterable[Ingredient] = (),
    container_volume: float = 0.0,
) -> float:
    """Scale factor (>= 1) that lands batched lines on whole/half measures and fills the container.

    Candidates step the largest line down from a full container in half-unit
    increments; each is scored on how clean every line's measure is, plus a
    bonus for filling the container.
    """
    units = batch_ingredient_units or {}
    ingredients = list(catalog or [])
    lines: List[_ScalingLine] = []
    for name, ml in original_amounts_ml.items():
        if ingredient_overrides.get(name) != "batch" or not ml or ml <= 0:
            continue
        lookup = next((i for i in ingredients if i.name.lower() == name.lower()), None)
        lines.append(_ScalingLine(name, ml, units.get(name) or "ml", lookup))

    if not lines:
        return 1.0

    single_ml = sum(line.original_ml for line in lines)
    max_scale = container_volume / single_ml if single_ml > 0 else 0.0
    if max_scale < 1:
        return 1.0

    base = max(lines, key=lambda line: line.original_ml)
    base_amount = base.in_target_unit(base.original_ml)
    if base_amount <= 0:
        return max_scale
    max_base_amount = base_amount * max_scale

    candidates = [max_scale]
    amount = math.floor(max_base_amount)
    while amount > 0:
        candidates.append(amount / base_amount)
        if amount / max_base_amount < MIN_SCALE_THRESHOLD:
            break
        amount -= CANDIDATE_SEARCH_STEP

    best_scale = 1.0
    best_score = -math.inf
    for scale in candidates:
        score = _score_scale(lines, scale, max_scale)
        if score is not None and score > best_score:
            best_score = score
            best_scale = scale
    return best_scale
