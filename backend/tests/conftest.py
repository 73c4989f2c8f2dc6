"""Shared catalog fixtures for the costing and batching tests."""

import sys
from pathlib import Path

import pytest

BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from schemas.ingredient import Ingredient, PrepAction, ProductVariant  # noqa: E402
from schemas.recipe import BatchSettings, Recipe, RecipeLine  # noqa: E402


@pytest.fixture
def bourbon():
    return Ingredient(
        id="ing-bourbon",
        name="Bourbon",
        category="spirit",
        abv=45.0,
        purchase_price=30.0,
        purchase_quantity=750,
        purchase_unit="ml",
    )


@pytest.fixture
def gin():
    return Ingredient(
        id="ing-gin",
        name="London Dry Gin",
        aliases=["Gin"],
        category="spirit",
        abv=40.0,
        purchase_price=25.0,
        purchase_quantity=1,
        purchase_unit="L",
    )


@pytest.fixture
def lime():
    return Ingredient(
        id="ing-lime",
        name="Lime",
        category="produce",
        purchase_price=0.5,
        purchase_quantity=1,
        purchase_unit="each",
        prep_actions=[
            PrepAction(id="prep-lime-juice", name="Juiced", yield_amount=1.0, yield_unit="oz"),
            PrepAction(id="prep-lime-wheel", name="Wheel"),
        ],
    )


@pytest.fixture
def sugar():
    return Ingredient(
        id="ing-sugar",
        name="White Sugar",
        category="dry_goods",
        purchase_price=4.0,
        purchase_quantity=1,
        purchase_unit="kg",
    )


@pytest.fixture
def simple_syrup_ingredient():
    return Ingredient(id="ing-simple", name="Simple Syrup", category="syrup", sub_recipe_id="rec-simple")


@pytest.fixture
def angostura():
    return Ingredient(
        id="ing-ango",
        name="Angostura Bitters",
        category="bitters",
        abv=44.7,
        cost_per_unit=0.05,
        cost_unit="dash",
    )


@pytest.fixture
def unpriced():
    return Ingredient(id="ing-mystery", name="Mystery Amaro", category="liqueur", abv=30.0)


@pytest.fixture
def catalog(bourbon, gin, lime, sugar, simple_syrup_ingredient, angostura, unpriced):
    return [bourbon, gin, lime, sugar, simple_syrup_ingredient, angostura, unpriced]


@pytest.fixture
def simple_syrup_recipe():
    # 1 kg sugar + 1 L water -> 1.5 L syrup, $4.00 total
    return Recipe(
        id="rec-simple",
        name="Simple Syrup",
        category="syrup",
        is_sellable_item=False,
        ingredients=[
            RecipeLine(ingredient_name="White Sugar", amount=1, unit="kg"),
            RecipeLine(ingredient_name="Water", amount=1, unit="l"),
        ],
        yield_total_amount=1500,
        yield_total_unit="ml",
    )


@pytest.fixture
def gimlet():
    return Recipe(
        id="rec-gimlet",
        name="Gimlet",
        category="cocktail",
        ingredients=[
            RecipeLine(ingredient_name="Gin", amount=2, unit="oz"),
            RecipeLine(ingredient_name="Lime - Juiced", amount=0.75, unit="oz"),
            RecipeLine(ingredient_name="Simple Syrup", ingredient_id="ing-simple", amount=0.75, unit="oz"),
        ],
        serving_size_amount=3.5,
        serving_size_unit="oz",
    )


@pytest.fixture
def old_fashioned_batch():
    return Recipe(
        id="rec-of-batch",
        name="Old Fashioned Batch",
        category="cocktail",
        ingredients=[
            RecipeLine(ingredient_name="Bourbon", amount=2, unit="oz"),
            RecipeLine(ingredient_name="Orange Peel", amount=1, unit="each"),
        ],
        batch_settings=BatchSettings(container_type="1L Bottle", container_count=1),
    )


@pytest.fixture
def variants():
    return [
        ProductVariant(id="var-gin-750", ingredient_id="ing-gin", size_ml=750, purchase_price=24.0),
        ProductVariant(id="var-gin-1750", ingredient_id="ing-gin", size_ml=1750, purchase_price=42.0),
        ProductVariant(id="var-gin-case", ingredient_id="ing-gin", size_ml=750, case_price=180.0, bottles_per_case=12),
    ]
