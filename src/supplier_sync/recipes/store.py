"""Read-only access to a recipe database file (JSON or YAML)."""

import json
import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError

from ..exceptions import RecipeLoadError
from .models import Recipe

logger = logging.getLogger(__name__)


class RecipeDatabase(BaseModel):
    """Parsed recipe database."""

    version: str = ""
    recipes: list[Recipe] = Field(default_factory=list)

    def get(self, supplier: str) -> Recipe | None:
        """Get a recipe by supplier name (case-insensitive)."""
        wanted = supplier.casefold()
        for recipe in self.recipes:
            if recipe.supplier.casefold() == wanted:
                return recipe
        return None

    def select(self, suppliers: list[str] | None = None) -> list[Recipe]:
        """Recipes for ``suppliers`` in the given order, or all recipes.

        Raises:
            RecipeLoadError: if a requested supplier has no recipe
        """
        if not suppliers:
            return list(self.recipes)
        selected = []
        for name in suppliers:
            recipe = self.get(name)
            if recipe is None:
                raise RecipeLoadError(f"No recipe for supplier {name!r}")
            selected.append(recipe)
        return selected


def _parse(path: Path, text: str) -> Any:
    if path.suffix.lower() in (".yaml", ".yml"):
        return yaml.safe_load(text)
    return json.loads(text)


def load_recipes(path: Path) -> RecipeDatabase:
    """Load and validate a recipe database.

    Accepts either a bare list of recipes or an object with ``version`` and
    ``recipes`` keys.

    Raises:
        RecipeLoadError: if the file cannot be read, parsed or validated
    """
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise RecipeLoadError(f"Cannot read recipe file {path}: {e}") from e

    try:
        data = _parse(path, text)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise RecipeLoadError(f"Cannot parse recipe file {path}: {e}") from e

    if isinstance(data, list):
        data = {"recipes": data}
    if not isinstance(data, dict):
        raise RecipeLoadError(f"Recipe file {path} must contain a list or an object with 'recipes'")

    try:
        database = RecipeDatabase.model_validate(data)
    except ValidationError as e:
        raise RecipeLoadError(f"Invalid recipe file {path}: {e}") from e

    logger.debug(f"Loaded {len(database.recipes)} recipes from {path}")
    return database
