"""
Price recipes from a JSON catalog and print batch prep sheets.

The catalog file holds three lists:
  {"ingredients": [...], "variants": [...], "recipes": [...]}

Run:
- inside backend/: `python scripts/price_recipes.py catalog.json`
- one recipe, per serving: `python scripts/price_recipes.py catalog.json --recipe "Old Fashioned" --mode per_serving`
- with a menu price: `... --menu-price 14`
"""

import argparse
import json
import logging
import sys
from pathlib import Path

BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from core.batching import (  # noqa: E402
    DILUTION_LINE_NAME,
    batch_settings_to_config,
    calculate_batch_cost,
    calculate_batch_metrics,
    container_volume_ml,
    find_optimal_scale_factor,
)
from core.config import settings  # noqa: E402
from core.costing import (  # noqa: E402
    calculate_recipe_abv,
    calculate_recipe_cost,
    index_variants,
    pour_cost_percentage,
    suggest_menu_price,
)
from core.exceptions import CostingEngineError  # noqa: E402
from core.units import ML_PER_OZ  # noqa: E402
from schemas.ingredient import Ingredient, ProductVariant  # noqa: E402
from schemas.recipe import Recipe  # noqa: E402


def load_catalog(path: Path):
    with path.open("r", encoding="utf-8") as f:
        data = json.load(f)
    ingredients = [Ingredient.model_validate(row) for row in data.get("ingredients") or []]
    variants = [ProductVariant.model_validate(row) for row in data.get("variants") or []]
    recipes = [Recipe.model_validate(row) for row in data.get("recipes") or []]
    return ingredients, variants, recipes


def print_cost(recipe: Recipe, ingredients, variants_by_ingredient, recipes, mode: str, menu_price) -> None:
    result = calculate_recipe_cost(
        recipe,
        ingredients,
        mode=mode,
        variants_by_ingredient=variants_by_ingredient,
        all_recipes=recipes,
    )
    print(f"[price_recipes] {recipe.name} ({mode})")
    for lc in result.ingredients_with_cost:
        flag = "" if lc.cost_status == "ok" else f"  <-- {lc.cost_status}"
        print(f"    {lc.amount:g} {lc.unit} {lc.display_name}: ${lc.cost:.2f}{flag}")
    print(f"    total: ${result.total_cost:.2f}")
    if not result.is_fully_costed:
        print(f"    {len(result.flagged_lines)} line(s) not costed")

    abv = calculate_recipe_abv(recipe, ingredients, all_recipes=recipes)
    if abv:
        print(f"    abv: {abv}%")
    if menu_price:
        pct = pour_cost_percentage(result.total_cost, menu_price)
        print(f"    pour cost at ${menu_price:.2f}: {pct:.1f}%")
    else:
        print(f"    suggested price at 20% pour cost: ${suggest_menu_price(result.total_cost):.2f}")


def print_batch(recipe: Recipe, ingredients, variants_by_ingredient, recipes) -> None:
    config = batch_settings_to_config(recipe, ingredients)
    metrics = calculate_batch_metrics(config)
    if metrics.nothing_to_batch:
        print("    batch: nothing to batch")
        return

    print(
        f"    batch: {metrics.container_count:g} x {config.container_type}"
        f" -> x{metrics.scale_factor:.2f} ({metrics.total_volume_ml:.0f} ml)"
    )
    for name, ml in metrics.per_ingredient_scaled_ml.items():
        print(f"      {name}: {ml:.0f} ml ({ml / ML_PER_OZ:.1f} oz)")
    if metrics.dilution_water_ml > 0:
        print(f"      {DILUTION_LINE_NAME}: {metrics.dilution_water_ml:.0f} ml")
    if metrics.service_lines:
        print(f"      at service: {', '.join(metrics.service_lines)}")
    if metrics.exceeds_container:
        print(f"      overflows the container by {metrics.overflow_ml:.0f} ml")

    if not metrics.scale_factor_is_manual and not config.is_container_custom:
        easy = find_optimal_scale_factor(
            config.original_batch_amounts_ml_per_serving,
            {name: "batch" for name in metrics.batch_lines},
            recipe.batch_settings.batch_ingredient_units,
            ingredients,
            container_volume_ml(config.container_type),
        )
        print(f"      clean-measure scale: x{easy:.2f}")

    cost = calculate_batch_cost(config, metrics, variants_by_ingredient, all_recipes=recipes)
    print(f"      batch cost: ${cost.batch_cost:.2f} (${cost.cost_per_container:.2f} per container)")


def main() -> None:
    parser = argparse.ArgumentParser(description="Cost recipes from a JSON catalog")
    parser.add_argument("catalog", type=Path, help="JSON file with ingredients, variants and recipes")
    parser.add_argument("--recipe", help="Only price the recipe with this name")
    parser.add_argument("--mode", choices=["total", "per_serving"], default="total")
    parser.add_argument("--menu-price", type=float, default=None, help="Menu price for the pour cost percentage")
    parser.add_argument("--no-batch", action="store_true", help="Skip batch prep sheets")
    args = parser.parse_args()

    logging.basicConfig(level=settings.log_level, format="%(levelname)s %(name)s: %(message)s")

    ingredients, variants, recipes = load_catalog(args.catalog)
    variants_by_ingredient = index_variants(variants)

    selected = recipes
    if args.recipe:
        selected = [r for r in recipes if r.name.strip().lower() == args.recipe.strip().lower()]
        if not selected:
            print(f"[price_recipes] no recipe named {args.recipe!r}")
            sys.exit(1)

    for recipe in selected:
        try:
            print_cost(recipe, ingredients, variants_by_ingredient, recipes, args.mode, args.menu_price)
            if recipe.batch_settings is not None and not args.no_batch:
                print_batch(recipe, ingredients, variants_by_ingredient, recipes)
        except CostingEngineError as e:
            print(f"[price_recipes] {recipe.name}: {e}")

    print(f"[price_recipes] done ({len(selected)} recipe(s)).")


if __name__ == "__main__":
    main()
