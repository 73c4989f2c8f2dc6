from typing import Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator, model_validator


BatchAssignment = Literal["batch", "service"]


class ByName(BaseModel):
    """Line that only carries free text (old data, manual input)."""
    kind: Literal["by_name"] = "by_name"
    name: str


class ById(BaseModel):
    """Line linked to a catalog ingredient (and optionally one of its prep actions)."""
    kind: Literal["by_id"] = "by_id"
    ingredient_id: str
    prep_action_id: Optional[str] = None


LineRef = Union[ByName, ById]


class RecipeLine(BaseModel):
    ingredient_name: str = ""
    ingredient_id: Optional[str] = None
    prep_action_id: Optional[str] = None
    amount: float = 0.0
    unit: str = "oz"
    notes: Optional[str] = None

    @field_validator("amount")
    @classmethod
    def _non_negative(cls, v: float) -> float:
        if v < 0:
            raise ValueError("amount must be non-negative")
        return v

    @field_validator("unit")
    @classmethod
    def _strip_unit(cls, v: str) -> str:
        return (v or "").strip()

    @model_validator(mode="after")
    def _has_reference(self):
        if not self.ingredient_name.strip() and not self.ingredient_id:
            raise ValueError("line requires ingredient_name or ingredient_id")
        return self

    @property
    def ref(self) -> LineRef:
        if self.ingredient_id:
            return ById(ingredient_id=self.ingredient_id, prep_action_id=self.prep_action_id)
        return ByName(name=self.ingredient_name)


class BatchSettings(BaseModel):
    """Batch-prep configuration persisted on a recipe.

    Numeric fields are kept as entered; the batch calculator clamps them.
    """
    container_type: str = "750ml Bottle"
    container_count: Optional[float] = 1
    is_container_custom: bool = False
    custom_volume_ml: Optional[float] = None
    scale_factor: Optional[float] = None
    include_dilution: bool = False
    dilution_percentage: Optional[float] = 25
    constrain_to_total_volume: bool = True
    ingredient_overrides: Dict[str, BatchAssignment] = Field(default_factory=dict)
    # display unit per line name, used by the clean-number scale search
    batch_ingredient_units: Dict[str, str] = Field(default_factory=dict)


class Recipe(BaseModel):
    id: Optional[str] = None
    name: str
    category: Optional[str] = None
    ingredients: List[RecipeLine] = Field(default_factory=list)
    serving_size_amount: Optional[float] = None
    serving_size_unit: Optional[str] = "oz"
    yield_total_amount: Optional[float] = None
    yield_total_unit: Optional[str] = "ml"
    is_sellable_item: bool = True
    batch_settings: Optional[BatchSettings] = None

    @property
    def is_sub_recipe(self) -> bool:
        category = (self.category or "").strip().lower()
        return not self.is_sellable_item or category in SUB_RECIPE_CATEGORIES


SUB_RECIPE_CATEGORIES = {
    "sub_recipe",
    "syrup",
    "infusion",
    "shrub",
    "cordial",
    "bitters",
    "tincture",
    "oleo_saccharum",
    "foam",
    "garnish_prep",
    "wash",
    "clarification",
    "super_juice",
}
