"""Recipe models, the recipe database loader and the JSON path extractor.

A recipe is a versioned, ordered list of steps for one supplier. Browser
recipes drive a supplier portal UI; client recipes (all steps ``oauth2-*``)
log in once through the browser and then talk to the supplier API directly.
"""

from .jsonpath import extract_json_values
from .models import (
    OAuth2Config,
    Recipe,
    RecipeResult,
    Step,
    StepResult,
    StepStatus,
)
from .store import RecipeDatabase, load_recipes

__all__ = [
    # Models
    "OAuth2Config",
    "Recipe",
    "Step",
    "StepStatus",
    "StepResult",
    "RecipeResult",
    # Loading
    "RecipeDatabase",
    "load_recipes",
    # Extraction
    "extract_json_values",
]
