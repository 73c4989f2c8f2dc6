from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from .ingredient import Ingredient
from .recipe import BatchAssignment, Recipe


class BatchConfig(BaseModel):
    """Input to the batch calculator: one recipe plus the batch-prep choices."""
    recipe: Recipe
    all_ingredients: List[Ingredient] = Field(default_factory=list)
    ingredient_overrides: Dict[str, BatchAssignment] = Field(default_factory=dict)
    container_type: str = "750ml Bottle"
    container_count: Optional[float] = 1
    is_container_custom: bool = False
    custom_volume_ml: Optional[float] = None
    scale_factor: Optional[float] = None
    include_dilution: bool = False
    dilution_percentage: Optional[float] = 0
    constrain_to_total_volume: bool = True
    # line name -> ml for one serving
    original_batch_amounts_ml_per_serving: Dict[str, float] = Field(default_factory=dict)


class BatchMetrics(BaseModel):
    scale_factor: float = 0.0
    total_volume_ml: float = 0.0
    dilution_water_ml: float = 0.0
    per_ingredient_scaled_ml: Dict[str, float] = Field(default_factory=dict)

    base_batch_volume_ml: float = 0.0
    concentrate_volume_ml: float = 0.0
    target_volume_ml: float = 0.0
    container_count: float = 0.0
    batch_lines: List[str] = Field(default_factory=list)
    service_lines: List[str] = Field(default_factory=list)
    nothing_to_batch: bool = False
    # poured volume beyond the named container(s), only when water goes on top
    overflow_ml: float = 0.0
    scale_factor_is_manual: bool = False

    @property
    def exceeds_container(self) -> bool:
        return self.overflow_ml > 0

    @property
    def servings(self) -> float:
        return self.scale_factor

    @property
    def volume_per_container_ml(self) -> float:
        if self.container_count <= 0:
            return self.total_volume_ml
        return self.total_volume_ml / self.container_count


class BatchCost(BaseModel):
    batch_cost: float = 0.0
    cost_per_container: float = 0.0
    cost_per_serving: float = 0.0
    flagged_lines: List[str] = Field(default_factory=list)
