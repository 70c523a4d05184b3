"""Per-run execution context threaded through every step handler.

The context is immutable. A handler that changes run state (adopting an
access token, counting new documents) returns an evolved copy together with
its ``StepResult``; the dispatcher passes that copy on to the next step. A
handler abandoned by a timeout therefore never leaks state into later steps.
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, replace
from pathlib import Path
from typing import TYPE_CHECKING, Any, Optional

from .config import AppSettings
from .credentials import Credentials
from .recipes.models import OAuth2Config, Recipe, StepResult

if TYPE_CHECKING:
    import httpx

    from .archive import DocumentArchive
    from .browser.session import RecipeBrowser


@dataclass(frozen=True)
class RunContext:
    """Everything a step may read, plus the state carried between steps."""

    recipe: Recipe
    credentials: Credentials
    archive: "DocumentArchive"
    settings: AppSettings
    downloads_dir: Path
    documents_dir: Path
    config_dir: Path
    browser: Optional["RecipeBrowser"] = None
    http: Optional["httpx.AsyncClient"] = None

    # State evolved by steps
    oauth2: OAuth2Config | None = None
    access_token: str = ""
    new_files_count: int = 0

    @property
    def token_cache_key(self) -> str:
        """Key of the cached OAuth2 tokens for this supplier account."""
        return f"{self.recipe.supplier}|{self.credentials.id}"

    def evolve(self, **changes: Any) -> "RunContext":
        return replace(self, **changes)

    def require_browser(self) -> "RecipeBrowser":
        if self.browser is None:
            raise RuntimeError("This step needs a browser but the run has none")
        return self.browser

    def require_http(self) -> "httpx.AsyncClient":
        if self.http is None:
            raise RuntimeError("This step needs an HTTP client but the run has none")
        return self.http


StepOutcome = tuple[StepResult, RunContext]
StepHandler = Callable[[RunContext, Any], Awaitable[StepOutcome]]
