"""Invoice retrieval from supplier portals by executing versioned recipes."""

from .config import settings
from .engine import BatchPosition, RecipeEngine, StepDispatcher
from .exceptions import BrowserError, BrowserStartupError, RecipeLoadError, SupplierSyncError
from .recipes import Recipe, RecipeResult, StepResult, load_recipes

__all__ = [
    "settings",
    "RecipeEngine",
    "StepDispatcher",
    "BatchPosition",
    "Recipe",
    "RecipeResult",
    "StepResult",
    "load_recipes",
    "SupplierSyncError",
    "BrowserError",
    "BrowserStartupError",
    "RecipeLoadError",
]
