from typing import List, Optional

from pydantic import BaseModel, Field, field_validator


class PrepAction(BaseModel):
    """Named transformation of an ingredient (e.g. Lime -> Juiced).

    yield_amount/yield_unit describe how much prepared output one purchase
    unit of the raw ingredient produces (1 lime -> 1 oz juice).
    """
    id: Optional[str] = None
    name: str
    yield_amount: Optional[float] = None
    yield_unit: Optional[str] = None


class CustomConversion(BaseModel):
    from_unit: str
    to_unit: str
    factor: float = Field(gt=0)

    @field_validator("from_unit", "to_unit")
    @classmethod
    def _normalize_unit(cls, v: str) -> str:
        v = (v or "").strip().lower()
        if not v:
            raise ValueError("unit is required")
        return v


class Ingredient(BaseModel):
    """Catalog entry for a purchasable good (or a house-made sub-recipe)."""
    id: Optional[str] = None
    name: str
    aliases: List[str] = Field(default_factory=list)
    category: Optional[str] = None
    spirit_type: Optional[str] = None
    style: Optional[str] = None
    substyle: Optional[str] = None
    abv: float = 0.0

    purchase_price: Optional[float] = None
    purchase_quantity: Optional[float] = None
    purchase_unit: Optional[str] = None
    case_price: Optional[float] = None
    bottles_per_case: Optional[int] = None
    use_case_pricing: bool = False

    # Explicit override, highest priority
    cost_per_unit: Optional[float] = None
    cost_unit: Optional[str] = None

    sub_recipe_id: Optional[str] = None
    prep_actions: List[PrepAction] = Field(default_factory=list)

    density_g_per_ml: Optional[float] = None
    custom_conversions: List[CustomConversion] = Field(default_factory=list)
    # ml held by one "each" (a garnish wheel, an egg white)
    unit_size_ml: Optional[float] = None

    @field_validator("name")
    @classmethod
    def _strip_required(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("name is required")
        return v

    @field_validator("abv")
    @classmethod
    def _abv_range(cls, v: float) -> float:
        if v < 0 or v > 100:
            raise ValueError("abv must be between 0 and 100")
        return v

    def find_prep_action(self, prep_action_id: Optional[str] = None, name: Optional[str] = None) -> Optional[PrepAction]:
        if prep_action_id:
            for p in self.prep_actions:
                if p.id == prep_action_id:
                    return p
            return None
        wanted = (name or "").strip().lower()
        if not wanted:
            return None
        for p in self.prep_actions:
            if p.name.strip().lower() == wanted:
                return p
        return None


class ProductVariant(BaseModel):
    """Purchasable SKU/size of an ingredient (brand + bottle size + price)."""
    id: Optional[str] = None
    ingredient_id: str
    size_ml: Optional[float] = None
    purchase_price: Optional[float] = None
    case_price: Optional[float] = None
    bottles_per_case: Optional[int] = None
