"""Tests for recipe costing.

Tests cover:
- Price priority (cost_per_unit, variants, bottle price, case price)
- Prep-action yields and sub-recipe costing
- Flagged lines (not found, no cost, unconvertible, invalid prep action, cycles)
- Cost modes, pour cost and ABV
"""

import pytest
from pydantic import ValidationError

from core.costing import (
    best_variant,
    calculate_ingredient_cost,
    calculate_recipe_abv,
    calculate_recipe_cost,
    costs_are_conserved,
    index_variants,
    ingredient_price_quote,
    is_exempt_ingredient,
    pour_cost_percentage,
    servings_per_yield,
    suggest_menu_price,
)
from core.exceptions import UnknownCostModeError
from core.units import ML_PER_OZ, UnitPolicy
from schemas.ingredient import Ingredient
from schemas.recipe import Recipe, RecipeLine


def _line(result, name):
    return next(lc for lc in result.ingredients_with_cost if lc.ingredient_name == name)


class TestPricePriority:

    def test_bottle_price_per_ml(self, bourbon):
        quote = ingredient_price_quote(bourbon)
        assert quote.unit == "ml"
        assert quote.price == pytest.approx(30.0 / 750)
        assert quote.source == "bottle_price"

    def test_cost_per_unit_wins(self, bourbon):
        overridden = bourbon.model_copy(update={"cost_per_unit": 1.5, "cost_unit": "oz"})
        quote = ingredient_price_quote(overridden)
        assert quote == (1.5, "oz", "cost_per_unit")

    def test_cost_unit_defaults_from_policy(self, bourbon):
        overridden = bourbon.model_copy(update={"cost_per_unit": 1.5})
        quote = ingredient_price_quote(overridden, unit_policy=UnitPolicy(default_cost_unit="ml"))
        assert quote.unit == "ml"

    def test_cheapest_bottle_priced_variant(self, gin, variants):
        quote = ingredient_price_quote(gin, index_variants(variants))
        assert quote.source == "variant"
        assert quote.price == pytest.approx(42.0 / 1750)

    def test_case_derived_variant_only_as_fallback(self, variants):
        case_only = [v for v in variants if v.case_price]
        picked, per_ml = best_variant(case_only)
        assert picked.id == "var-gin-case"
        assert per_ml == pytest.approx(15.0 / 750)
        assert best_variant([]) is None

    def test_purchase_price_beats_case_price(self, bourbon):
        both = bourbon.model_copy(update={"case_price": 240.0, "bottles_per_case": 12})
        assert ingredient_price_quote(both).source == "bottle_price"

    def test_use_case_pricing(self, bourbon):
        case = bourbon.model_copy(update={"case_price": 240.0, "bottles_per_case": 12, "use_case_pricing": True})
        quote = ingredient_price_quote(case)
        assert quote.source == "case_price"
        assert quote.price == pytest.approx(20.0 / 750)

    def test_case_price_when_nothing_else(self):
        wine = Ingredient(name="House Red", purchase_unit="750ml", case_price=96.0, bottles_per_case=12)
        quote = ingredient_price_quote(wine)
        assert quote.source == "case_price"
        assert quote.price == pytest.approx(8.0 / 750)

    def test_no_price(self, unpriced):
        assert ingredient_price_quote(unpriced) is None


class TestCalculateRecipeCost:

    def test_old_fashioned_bourbon_line(self, old_fashioned_batch, catalog):
        result = calculate_recipe_cost(old_fashioned_batch, catalog, mode="total")
        bourbon = _line(result, "Bourbon")
        assert bourbon.cost == pytest.approx(2 * ML_PER_OZ / 750 * 30, rel=1e-6)
        assert bourbon.cost == pytest.approx(2.366, abs=0.001)
        assert bourbon.amount_ml == pytest.approx(2 * ML_PER_OZ)
        assert _line(result, "Orange Peel").cost_status == "not_found"

    def test_gimlet_with_sub_recipe_and_prep_yield(self, gimlet, catalog, simple_syrup_recipe):
        result = calculate_recipe_cost(gimlet, catalog, all_recipes=[simple_syrup_recipe])

        gin = _line(result, "Gin")
        assert gin.cost == pytest.approx(2 * ML_PER_OZ / 1000 * 25)
        assert gin.price_source == "bottle_price"

        lime = _line(result, "Lime - Juiced")
        assert lime.cost == pytest.approx(0.375)
        assert lime.price_source == "prep_action_yield"
        assert lime.display_name == "Lime, Juiced"

        syrup = _line(result, "Simple Syrup")
        assert syrup.is_sub_recipe_line
        assert syrup.source_sub_recipe_id == "rec-simple"
        assert syrup.cost == pytest.approx(4.0 / 1500 * 0.75 * ML_PER_OZ)

        assert result.is_fully_costed
        assert result.total_cost == pytest.approx(gin.cost + lime.cost + syrup.cost)

    def test_sub_recipe_without_recipes_is_no_cost(self, gimlet, catalog):
        result = calculate_recipe_cost(gimlet, catalog)
        assert _line(result, "Simple Syrup").cost_status == "no_cost"
        assert not result.is_fully_costed

    def test_recursion_disabled(self, gimlet, catalog, simple_syrup_recipe):
        result = calculate_recipe_cost(gimlet, catalog, allow_sub_recipe_recursion=False, all_recipes=[simple_syrup_recipe])
        assert _line(result, "Simple Syrup").cost_status == "no_cost"

    def test_sub_recipe_matched_by_name(self, catalog, simple_syrup_recipe):
        recipe = Recipe(name="Sweet", ingredients=[RecipeLine(ingredient_name="simple syrup", amount=30, unit="ml")])
        no_link = [i for i in catalog if i.id != "ing-simple"]
        result = calculate_recipe_cost(recipe, no_link, all_recipes=[simple_syrup_recipe])
        line = result.ingredients_with_cost[0]
        assert line.is_sub_recipe_line
        assert line.cost == pytest.approx(4.0 / 1500 * 30)

    def test_exempt_water_is_free_and_not_flagged(self, simple_syrup_recipe, catalog):
        result = calculate_recipe_cost(simple_syrup_recipe, catalog)
        water = _line(result, "Water")
        assert water.is_exempt
        assert water.cost == 0
        assert water.cost_status == "ok"
        assert result.total_cost == pytest.approx(4.0)

    def test_priced_filler_is_costed(self, catalog):
        tonic = Ingredient(id="ing-tonic", name="Tonic Water", cost_per_unit=0.30, cost_unit="oz")
        soda = Ingredient(id="ing-soda", name="Soda Water")
        recipe = Recipe(
            name="Highball Top",
            ingredients=[
                RecipeLine(ingredient_name="Tonic Water", amount=4, unit="oz"),
                RecipeLine(ingredient_name="Soda Water", amount=2, unit="oz"),
            ],
        )
        result = calculate_recipe_cost(recipe, catalog + [tonic, soda])

        line = _line(result, "Tonic Water")
        assert line.cost == pytest.approx(1.20)
        assert line.cost_status == "ok"
        assert not line.is_exempt
        assert line.price_source == "cost_per_unit"

        unpriced_soda = _line(result, "Soda Water")
        assert unpriced_soda.is_exempt
        assert unpriced_soda.cost == 0
        assert result.is_fully_costed
        assert result.total_cost == pytest.approx(1.20)

    def test_sub_recipe_preferred_over_same_name_drink(self, catalog):
        drink = Recipe(
            id="rec-drink",
            name="House Grenadine",
            category="cocktail",
            ingredients=[RecipeLine(ingredient_name="Bourbon", amount=2, unit="oz")],
        )
        syrup = Recipe(
            id="rec-syrup",
            name="House Grenadine",
            category="syrup",
            is_sellable_item=False,
            yield_total_amount=1000,
            yield_total_unit="ml",
            ingredients=[RecipeLine(ingredient_name="White Sugar", amount=500, unit="g")],
        )
        recipe = Recipe(name="Jack Rose", ingredients=[RecipeLine(ingredient_name="House Grenadine", amount=30, unit="ml")])
        result = calculate_recipe_cost(recipe, catalog, all_recipes=[drink, syrup])

        line = result.ingredients_with_cost[0]
        assert line.source_sub_recipe_id == "rec-syrup"
        assert line.cost == pytest.approx(2.0 / 1000 * 30)

    def test_missing_price_still_totals_the_rest(self, catalog):
        recipe = Recipe(
            name="Bitter Bourbon",
            ingredients=[
                RecipeLine(ingredient_name="Bourbon", amount=2, unit="oz"),
                RecipeLine(ingredient_name="Mystery Amaro", amount=0.5, unit="oz"),
            ],
        )
        result = calculate_recipe_cost(recipe, catalog)
        amaro = _line(result, "Mystery Amaro")
        assert amaro.cost == 0
        assert amaro.cost_status == "no_cost"
        assert result.total_cost == pytest.approx(_line(result, "Bourbon").cost)
        assert [lc.ingredient_name for lc in result.flagged_lines] == ["Mystery Amaro"]

    def test_unconvertible_unit_is_flagged(self, catalog):
        recipe = Recipe(name="Sugar Rim", ingredients=[RecipeLine(ingredient_name="White Sugar", amount=1, unit="oz")])
        line = calculate_recipe_cost(recipe, catalog).ingredients_with_cost[0]
        assert line.cost == 0
        assert line.cost_status == "unconvertible_unit"

    def test_weight_oz_policy_costs_sugar(self, catalog):
        recipe = Recipe(name="Sugar Rim", ingredients=[RecipeLine(ingredient_name="White Sugar", amount=1, unit="oz")])
        result = calculate_recipe_cost(recipe, catalog, unit_policy=UnitPolicy(oz_interpretation="weight"))
        assert result.total_cost == pytest.approx(28.3495 / 1000 * 4.0)

    def test_invalid_prep_action(self, catalog):
        recipe = Recipe(name="Bad", ingredients=[RecipeLine(ingredient_id="ing-lime", prep_action_id="prep-nope", amount=1)])
        line = calculate_recipe_cost(recipe, catalog).ingredients_with_cost[0]
        assert line.cost == 0
        assert line.cost_status == "invalid_prep_action"

    def test_cost_per_unit_in_dashes(self, catalog):
        recipe = Recipe(name="Bitters", ingredients=[RecipeLine(ingredient_name="Angostura Bitters", amount=2, unit="dash")])
        assert calculate_recipe_cost(recipe, catalog).total_cost == pytest.approx(0.10)

    def test_variants_used_when_given(self, catalog, variants):
        recipe = Recipe(name="Gin Shot", ingredients=[RecipeLine(ingredient_name="Gin", amount=2, unit="oz")])
        result = calculate_recipe_cost(recipe, catalog, variants_by_ingredient=index_variants(variants))
        line = result.ingredients_with_cost[0]
        assert line.price_source == "variant"
        assert line.cost == pytest.approx(2 * ML_PER_OZ * 42.0 / 1750)

    def test_deterministic_and_conserved(self, gimlet, catalog, simple_syrup_recipe):
        first = calculate_recipe_cost(gimlet, catalog, all_recipes=[simple_syrup_recipe])
        second = calculate_recipe_cost(gimlet, catalog, all_recipes=[simple_syrup_recipe])
        assert first == second
        assert costs_are_conserved(first)

    def test_empty_recipe(self, catalog):
        result = calculate_recipe_cost(Recipe(name="Nothing"), catalog)
        assert result.total_cost == 0
        assert result.ingredients_with_cost == []


class TestCycles:

    def test_cycle_terminates_and_is_flagged(self):
        catalog = [
            Ingredient(id="ing-a", name="Syrup A", sub_recipe_id="rec-a"),
            Ingredient(id="ing-b", name="Syrup B", sub_recipe_id="rec-b"),
        ]
        a = Recipe(id="rec-a", name="Syrup A", ingredients=[RecipeLine(ingredient_name="Syrup B", amount=1)], yield_total_amount=10)
        b = Recipe(id="rec-b", name="Syrup B", ingredients=[RecipeLine(ingredient_name="Syrup A", amount=1)], yield_total_amount=10)

        result = calculate_recipe_cost(a, catalog, all_recipes=[a, b])
        assert result.total_cost == 0
        assert any(lc.cost_status == "cycle_error" for lc in result.ingredients_with_cost)

    def test_self_reference(self):
        catalog = [Ingredient(id="ing-a", name="Solera", sub_recipe_id="rec-a")]
        a = Recipe(id="rec-a", name="Solera", ingredients=[RecipeLine(ingredient_name="Solera", amount=1)], yield_total_amount=10)
        result = calculate_recipe_cost(a, catalog, all_recipes=[a])
        assert result.ingredients_with_cost[0].cost_status == "cycle_error"

    def test_shared_sub_recipe_is_not_a_cycle(self, catalog, simple_syrup_recipe):
        recipe = Recipe(
            name="Double Sweet",
            ingredients=[
                RecipeLine(ingredient_name="Simple Syrup", amount=0.5, unit="oz"),
                RecipeLine(ingredient_name="Simple Syrup", amount=0.5, unit="oz"),
            ],
        )
        result = calculate_recipe_cost(recipe, catalog, all_recipes=[simple_syrup_recipe])
        assert all(lc.cost_status == "ok" for lc in result.ingredients_with_cost)
        assert result.ingredients_with_cost[0].cost == pytest.approx(result.ingredients_with_cost[1].cost)


class TestModes:

    def test_per_serving_divides_by_servings(self, simple_syrup_recipe, catalog):
        recipe = simple_syrup_recipe.model_copy(update={"serving_size_amount": 750, "serving_size_unit": "ml"})
        assert servings_per_yield(recipe) == pytest.approx(2.0)
        result = calculate_recipe_cost(recipe, catalog, mode="per_serving")
        assert result.mode == "per_serving"
        assert result.total_cost == pytest.approx(2.0)
        assert costs_are_conserved(result)

    def test_per_serving_without_yield_equals_total(self, old_fashioned_batch, catalog):
        total = calculate_recipe_cost(old_fashioned_batch, catalog, mode="total")
        per = calculate_recipe_cost(old_fashioned_batch, catalog, mode="per_serving")
        assert per.total_cost == pytest.approx(total.total_cost)

    def test_unknown_mode(self, old_fashioned_batch, catalog):
        with pytest.raises(UnknownCostModeError):
            calculate_recipe_cost(old_fashioned_batch, catalog, mode="per_bottle")


class TestSingleLine:

    def test_calculate_ingredient_cost(self, catalog):
        line = calculate_ingredient_cost(RecipeLine(ingredient_name="Bourbon", amount=1, unit="oz"), catalog)
        assert line.cost == pytest.approx(ML_PER_OZ * 30 / 750)

    def test_is_exempt_ingredient(self):
        assert is_exempt_ingredient("Club Soda")
        assert is_exempt_ingredient("ice")
        assert not is_exempt_ingredient("Spiced Rum")
        assert not is_exempt_ingredient("")


class TestPourCostAndAbv:

    def test_pour_cost_percentage(self):
        assert pour_cost_percentage(2.0, 10.0) == pytest.approx(20.0)
        assert pour_cost_percentage(2.0, 0) is None

    def test_suggest_menu_price(self):
        assert suggest_menu_price(2.0) == pytest.approx(10.0)
        assert suggest_menu_price(3.0, 25.0) == pytest.approx(12.0)

    def test_abv(self, gimlet, catalog, simple_syrup_recipe):
        assert calculate_recipe_abv(gimlet, catalog, all_recipes=[simple_syrup_recipe]) == pytest.approx(22.9)

    def test_abv_with_dilution(self, old_fashioned_batch, catalog):
        # orange peel has no volume, so the bourbon alone sets the ABV
        assert calculate_recipe_abv(old_fashioned_batch, catalog) == pytest.approx(45.0)
        assert calculate_recipe_abv(old_fashioned_batch, catalog, dilution_percentage=20) == pytest.approx(36.0)


class TestSchemaValidation:

    def test_negative_amount_rejected(self):
        with pytest.raises(ValidationError):
            RecipeLine(ingredient_name="Gin", amount=-1)

    def test_line_needs_a_reference(self):
        with pytest.raises(ValidationError):
            RecipeLine(amount=1)

    def test_blank_ingredient_name_rejected(self):
        with pytest.raises(ValidationError):
            Ingredient(name="   ")
