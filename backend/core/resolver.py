"""
Ingredient resolution: free-text recipe lines -> catalog ingredients.

Lookup order for a name (first catalog entry wins at every step, so the
result only depends on the catalog order and the text):
    1. exact name, case-insensitive
    2. alphanumeric-only name ("St-Germain" == "st germain")
    3. alias
    4. whole-word substring, either direction
"""

import logging
import re
from typing import Iterable, List, Optional, Tuple

from pydantic import BaseModel

from schemas.ingredient import Ingredient, PrepAction
from schemas.recipe import ById, RecipeLine

logger = logging.getLogger(__name__)

# Words that turn a base ingredient into a prepared one ("Lemon Juice", "Orange Peel")
PREP_QUALIFIERS = (
    "juice",
    "juiced",
    "zest",
    "zested",
    "peel",
    "peeled",
    "twist",
    "wheel",
    "wedge",
    "slice",
    "sliced",
    "muddled",
    "expressed",
    "oleo",
)

# Text after a comma that is an instruction, not a prep action ("Gin, stir")
INVALID_PREP_ACTIONS = {"pour", "add", "stir", "shake", "combine", "mix", "prepare", "measure"}

MIN_SUBSTRING_MATCH = 3


class ResolvedLine(BaseModel):
    ingredient: Optional[Ingredient] = None
    prep_action: Optional[PrepAction] = None
    display_name: str
    base_name: str = ""
    qualifier: Optional[str] = None
    # prep_action_id on the line did not exist on the ingredient
    invalid_prep_action: bool = False

    @property
    def found(self) -> bool:
        return self.ingredient is not None


def normalize_for_match(text: Optional[str]) -> str:
    return re.sub(r"[^a-z0-9]", "", (text or "").lower())


def _clean(text: Optional[str]) -> str:
    return re.sub(r"\s+", " ", (text or "").strip().lower())


def split_line_name(line_name: Optional[str]) -> Tuple[str, Optional[str]]:
    """Split "Lime - Juiced" / "Lime, Zest" / "Lemon Juice" into (base, qualifier)."""
    text = re.sub(r"\s+", " ", (line_name or "").strip())
    if not text:
        return "", None

    if " - " in text:
        parts = [p.strip() for p in text.split(" - ")]
        if len(parts) >= 2 and parts[0] and parts[1]:
            return parts[0], parts[1]

    if "," in text:
        parts = [p.strip() for p in text.split(",")]
        if len(parts) >= 2 and parts[0] and parts[1]:
            if parts[1].lower() in INVALID_PREP_ACTIONS:
                return text, None
            return parts[0], parts[1]

    words = text.split(" ")
    if len(words) >= 2 and words[-1].lower() in PREP_QUALIFIERS:
        return " ".join(words[:-1]), words[-1]

    return text, None


def _word_contains(haystack: str, needle: str) -> bool:
    return re.search(r"\b" + re.escape(needle) + r"\b", haystack) is not None


def find_ingredient_by_id(ingredient_id: Optional[str], catalog: Iterable[Ingredient]) -> Optional[Ingredient]:
    if not ingredient_id:
        return None
    for ing in catalog:
        if ing.id == ingredient_id:
            return ing
    return None


def find_matching_ingredient(
    name: Optional[str],
    catalog: Iterable[Ingredient],
    ingredient_id: Optional[str] = None,
    allow_substring: bool = True,
) -> Optional[Ingredient]:
    ingredients: List[Ingredient] = list(catalog or [])

    if ingredient_id:
        match = find_ingredient_by_id(ingredient_id, ingredients)
        if match is not None:
            return match
        logger.warning("Ingredient id %s not in catalog, falling back to name %r", ingredient_id, name)

    search = _clean(name)
    if not search or not ingredients:
        return None
    normalized = normalize_for_match(search)

    for ing in ingredients:
        if _clean(ing.name) == search:
            return ing

    if normalized:
        for ing in ingredients:
            if normalize_for_match(ing.name) == normalized:
                return ing

    for ing in ingredients:
        for alias in ing.aliases:
            if _clean(alias) == search or (normalized and normalize_for_match(alias) == normalized):
                return ing

    if allow_substring and len(search) >= MIN_SUBSTRING_MATCH:
        for ing in ingredients:
            candidate = _clean(ing.name)
            if len(candidate) < MIN_SUBSTRING_MATCH:
                continue
            if _word_contains(candidate, search) or _word_contains(search, candidate):
                return ing

    return None


def _qualifier_matches(prep_name: str, qualifier: str) -> bool:
    a = normalize_for_match(prep_name)
    b = normalize_for_match(qualifier)
    if not a or not b:
        return False
    # juice/juiced, zest/zested, peel/peeled
    return a == b or a.startswith(b) or b.startswith(a)


def _match_prep_action(ingredient: Ingredient, qualifier: Optional[str]) -> Optional[PrepAction]:
    if not qualifier:
        return None
    exact = ingredient.find_prep_action(name=qualifier)
    if exact is not None:
        return exact
    for prep in ingredient.prep_actions:
        if _qualifier_matches(prep.name, qualifier):
            return prep
    return None


def _display(ingredient: Ingredient, prep: Optional[PrepAction]) -> str:
    if prep is not None:
        return f"{ingredient.name}, {prep.name}"
    return ingredient.name


def resolve_ingredient_line(
    line_name: Optional[str],
    explicit_id: Optional[str] = None,
    catalog: Iterable[Ingredient] = (),
) -> ResolvedLine:
    """Match a recipe line's text (and optional ingredient id) to the catalog.

    Never raises: an unknown line comes back with ingredient=None and the
    original text as display_name.
    """
    ingredients = list(catalog or [])
    text = (line_name or "").strip()

    if explicit_id:
        match = find_ingredient_by_id(explicit_id, ingredients)
        if match is not None:
            _, qualifier = split_line_name(text)
            prep = _match_prep_action(match, qualifier)
            return ResolvedLine(
                ingredient=match,
                prep_action=prep,
                display_name=_display(match, prep),
                base_name=match.name,
                qualifier=qualifier,
            )
        logger.warning("Ingredient id %s not in catalog, resolving %r by name", explicit_id, text)

    base, qualifier = split_line_name(text)

    # Whole text first, so a catalog "Lemon Juice" beats "Lemon" + juice
    match = find_matching_ingredient(text, ingredients, allow_substring=False)
    if match is not None:
        return ResolvedLine(ingredient=match, display_name=match.name, base_name=text)

    if qualifier:
        match = find_matching_ingredient(base, ingredients)
        if match is not None:
            prep = _match_prep_action(match, qualifier)
            return ResolvedLine(
                ingredient=match,
                prep_action=prep,
                display_name=_display(match, prep),
                base_name=base,
                qualifier=qualifier,
            )

    match = find_matching_ingredient(text, ingredients)
    if match is not None:
        return ResolvedLine(ingredient=match, display_name=match.name, base_name=text)

    logger.debug("No catalog ingredient for line %r", text)
    return ResolvedLine(display_name=line_name or "", base_name=base, qualifier=qualifier)


def resolve_recipe_line(line: RecipeLine, catalog: Iterable[Ingredient]) -> ResolvedLine:
    """Resolve a RecipeLine through its tagged reference (by id or by name)."""
    ref = line.ref
    ingredients = list(catalog or [])
    if isinstance(ref, ById) and ref.prep_action_id:
        match = find_ingredient_by_id(ref.ingredient_id, ingredients)
        if match is not None:
            prep = match.find_prep_action(prep_action_id=ref.prep_action_id)
            return ResolvedLine(
                ingredient=match,
                prep_action=prep,
                display_name=_display(match, prep),
                base_name=match.name,
                invalid_prep_action=prep is None,
            )
    explicit_id = ref.ingredient_id if isinstance(ref, ById) else None
    return resolve_ingredient_line(line.ingredient_name, explicit_id, ingredients)
