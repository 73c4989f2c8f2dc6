from typing import List, Literal, Optional

from pydantic import BaseModel, Field


CostStatus = Literal[
    "ok",
    "not_found",
    "no_cost",
    "cycle_error",
    "unconvertible_unit",
    "invalid_prep_action",
]

CostMode = Literal["total", "per_serving"]

PriceSource = Literal[
    "cost_per_unit",
    "variant",
    "bottle_price",
    "case_price",
    "prep_action_yield",
    "sub_recipe",
    "exempt",
]


class LineCost(BaseModel):
    """Costed recipe line, as shown next to each ingredient on a recipe card."""
    ingredient_name: str
    display_name: str
    amount: float
    unit: str
    ingredient_id: Optional[str] = None
    prep_action_id: Optional[str] = None
    cost: float = 0.0
    cost_status: CostStatus = "ok"
    price_source: Optional[PriceSource] = None
    is_exempt: bool = False
    is_sub_recipe_line: bool = False
    source_sub_recipe_id: Optional[str] = None
    # line amount expressed in ml, when the unit has a volume path
    amount_ml: Optional[float] = None
    message: Optional[str] = None


class CostResult(BaseModel):
    recipe_id: Optional[str] = None
    recipe_name: str
    mode: CostMode = "total"
    total_cost: float = 0.0
    ingredients_with_cost: List[LineCost] = Field(default_factory=list)
    total_yield: float = 0.0

    @property
    def flagged_lines(self) -> List[LineCost]:
        return [line for line in self.ingredients_with_cost if line.cost_status != "ok"]

    @property
    def is_fully_costed(self) -> bool:
        return not self.flagged_lines
