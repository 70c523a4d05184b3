"""Recipe execution engine.

``StepDispatcher`` runs the steps of one recipe in order. Each step runs as its
own task raced against the per-step timeout; its ``StepResult`` is folded into
a running ``RecipeResult``. ``RecipeEngine`` prepares everything a run needs
(directories, browser, HTTP client, logging context) and picks the dispatcher
variant from the recipe type.
"""

import asyncio
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, assert_never

import anyio
import httpx
import typer

from . import fetcher
from .archive import DocumentArchive
from .browser import steps as browser_steps
from .browser.session import RecipeBrowser
from .config import AppSettings
from .context import RunContext, StepHandler, StepOutcome
from .credentials import Credentials
from .exceptions import BrowserError, BrowserStartupError
from .files import init_supplier_directories, truncate_directory
from .oauth2 import steps as oauth2_steps
from .observability.logging import bind_run_context, clear_run_context, get_run_logger
from .progress import NullProgressSink, ProgressSink, ProgressUpdate, StepStarted
from .recipes.models import (
    ClickStep,
    DownloadAllStep,
    MoveStep,
    OAuth2AuthenticateStep,
    OAuth2CheckTokensStep,
    OAuth2PostAndGetItemsStep,
    OAuth2SetupStep,
    OpenStep,
    Recipe,
    RecipeResult,
    RemoveElementStep,
    RunScriptDownloadUrlsStep,
    RunScriptStep,
    SleepStep,
    Step,
    StepResult,
    StepStatus,
    TransformStep,
    TypeStep,
    WaitForStep,
)

logger = logging.getLogger(__name__)


def new_documents_text(count: int) -> str:
    if count == 0:
        return "No new documents"
    if count == 1:
        return "One new document"
    return f"{count} new documents"


def _bold(text: str) -> str:
    return typer.style(text, bold=True)


@dataclass(frozen=True)
class BatchPosition:
    """Where a recipe sits in a batch of recipes, for overall progress."""

    completed_before: int = 0  # Steps of earlier recipes in the batch
    total_steps: int = 0  # Steps of all recipes in the batch; 0 means this recipe only


def resolve_handler(step: Step) -> StepHandler:
    """Map a step to the coroutine that executes it."""
    match step:
        case OpenStep():
            return browser_steps.open_page
        case RemoveElementStep():
            return browser_steps.remove_element
        case ClickStep():
            return browser_steps.click
        case TypeStep():
            return browser_steps.type_text
        case SleepStep():
            return browser_steps.sleep
        case WaitForStep():
            return browser_steps.wait_for
        case DownloadAllStep():
            return browser_steps.download_all
        case TransformStep():
            return browser_steps.transform
        case MoveStep():
            return browser_steps.move
        case RunScriptStep():
            return browser_steps.run_script
        case RunScriptDownloadUrlsStep():
            return browser_steps.run_script_download_urls
        case OAuth2SetupStep():
            return oauth2_steps.setup
        case OAuth2CheckTokensStep():
            return oauth2_steps.check_tokens
        case OAuth2AuthenticateStep():
            return oauth2_steps.authenticate
        case OAuth2PostAndGetItemsStep():
            return fetcher.post_and_get_items
        case _:
            assert_never(step)


def _discard_result(task: asyncio.Task) -> None:
    # Retrieve the outcome of an abandoned step so asyncio does not report it
    if not task.cancelled():
        task.exception()


class StepDispatcher:
    """Runs the steps of one recipe and aggregates their results.

    Args:
        step_timeout: Seconds each step may take
        purge_staging: Empty the staging directory on abort and after the last step
        handlers: Per-action handler overrides, keyed by the step ``action``
    """

    def __init__(
        self,
        step_timeout: float,
        purge_staging: bool,
        handlers: Optional[Mapping[str, StepHandler]] = None,
    ):
        self.step_timeout = step_timeout
        self.purge_staging = purge_staging
        self.handlers = dict(handlers or {})

    def handler_for(self, step: Step) -> StepHandler:
        return self.handlers.get(step.action) or resolve_handler(step)

    async def _execute(self, handler: StepHandler, ctx: RunContext, step: Step) -> StepOutcome:
        try:
            return await handler(ctx, step)
        except Exception as e:
            logger.exception(f"Step {step.action} failed")
            return StepResult.error(str(e) or type(e).__name__, break_recipe=True), ctx

    async def _purge(self, ctx: RunContext) -> None:
        if not self.purge_staging:
            return
        try:
            await anyio.to_thread.run_sync(truncate_directory, ctx.downloads_dir)
        except OSError as e:
            logger.warning(f"Could not purge staging directory {ctx.downloads_dir}: {e}")

    async def run(
        self,
        ctx: RunContext,
        progress: ProgressSink,
        position: BatchPosition = BatchPosition(),
        deadline: float | None = None,
    ) -> RecipeResult:
        """Execute every step of ``ctx.recipe`` in order.

        Args:
            ctx: Initial run context
            progress: Receives ``StepStarted`` and ``ProgressUpdate`` events
            position: Batch counters for overall progress
            deadline: Event loop time after which no step may keep running
        """
        recipe = ctx.recipe
        supplier = recipe.supplier
        step_count = len(recipe.steps)
        total_steps = position.total_steps or step_count
        loop = asyncio.get_running_loop()
        result: RecipeResult | None = None

        for n, step in enumerate(recipe.steps, start=1):
            step_id = recipe.step_id(n, step)
            progress.send(
                StepStarted(
                    title=f"Downloading invoices from {supplier} ({n}/{step_count}):",
                    description=step.description,
                )
            )
            logger.debug(f"Executing recipe step {step_id}")

            timeout = self.step_timeout
            if deadline is not None:
                timeout = max(0.0, min(timeout, deadline - loop.time()))

            task = asyncio.create_task(self._execute(self.handler_for(step), ctx, step), name=step_id)
            try:
                done, _ = await asyncio.wait({task}, timeout=timeout)
            finally:
                if not task.done():
                    task.cancel()
                    task.add_done_callback(_discard_result)

            if not done:
                logger.warning(f"Step {step_id} timed out after {timeout:.1f}s")
                await self._purge(ctx)
                return RecipeResult(
                    status=StepStatus.ERROR,
                    status_text=f"{supplier} aborted with timeout.",
                    status_text_formatted=f"x {_bold(supplier)} aborted with timeout.",
                    last_step_id=step_id,
                    last_step_description=step.description,
                    new_files_count=ctx.new_files_count,
                )

            step_result, ctx = task.result()
            if step_result.ok:
                count_text = new_documents_text(ctx.new_files_count)
                result = RecipeResult(
                    status=StepStatus.SUCCESS,
                    status_text=f"{supplier}: {count_text}",
                    status_text_formatted=f"- {_bold(supplier)}: {count_text}",
                    last_step_id=step_id,
                    last_step_description=step.description,
                    new_files_count=ctx.new_files_count,
                )
            else:
                logger.warning(f"Step {step_id} failed: {step_result.message}")
                result = RecipeResult(
                    status=StepStatus.ERROR,
                    status_text=f"{supplier} aborted with error.",
                    status_text_formatted=f"x {_bold(supplier)} aborted with error.",
                    last_step_id=step_id,
                    last_step_description=step.description,
                    last_error_message=step_result.message,
                    new_files_count=ctx.new_files_count,
                )
                if step_result.break_recipe:
                    await self._purge(ctx)
                    return result

            progress.send(ProgressUpdate(percent=(position.completed_before + n) / total_steps))

        await self._purge(ctx)
        assert result is not None  # Recipes have at least one step
        return result


BrowserFactory = Callable[[bool], RecipeBrowser]


class RecipeEngine:
    """Runs recipes against a browser or an OAuth2-secured API.

    Usage:
        engine = RecipeEngine(settings, archive)
        result = await engine.run_recipe(recipe, credentials, LoggingProgressSink())

    Raises ``BrowserStartupError`` from ``run_recipe`` when Chrome cannot be
    started; every failure after that is reported in the ``RecipeResult``.
    """

    def __init__(
        self,
        settings: AppSettings,
        archive: DocumentArchive,
        documents_root: Optional[Path] = None,
        config_dir: Optional[Path] = None,
        browser_factory: Optional[BrowserFactory] = None,
    ):
        self.settings = settings
        self.archive = archive
        self.documents_root = documents_root or settings.get_documents_dir()
        self.config_dir = config_dir or settings.get_config_dir()
        self.browser_factory = browser_factory or self._default_browser

    def _default_browser(self, headless: bool) -> RecipeBrowser:
        return RecipeBrowser(self.settings.browser, self.settings.engine, headless=headless)

    def dispatcher_for(self, recipe: Recipe) -> StepDispatcher:
        if recipe.type == "client":
            return StepDispatcher(self.settings.engine.client_step_timeout, purge_staging=False)
        return StepDispatcher(self.settings.engine.browser_step_timeout, purge_staging=True)

    async def run_recipe(
        self,
        recipe: Recipe,
        credentials: Credentials,
        progress: Optional[ProgressSink] = None,
        position: BatchPosition = BatchPosition(),
    ) -> RecipeResult:
        progress = progress or NullProgressSink()
        downloads_dir, documents_dir = init_supplier_directories(self.documents_root, recipe.supplier)
        logger.info(f"Download directories ready: {downloads_dir}, {documents_dir}")

        bind_run_context(recipe.supplier, recipe.version)
        try:
            # OAuth2 logins run in a visible browser
            headless = self.settings.browser.headless if recipe.type == "browser" else False
            async with self.browser_factory(headless) as browser:
                deadline = asyncio.get_running_loop().time() + self.settings.browser.safety_timeout
                ctx = RunContext(
                    recipe=recipe,
                    credentials=credentials,
                    archive=self.archive,
                    settings=self.settings,
                    downloads_dir=downloads_dir,
                    documents_dir=documents_dir,
                    config_dir=self.config_dir,
                    browser=browser,
                )
                logger.info(f"Starting {recipe.type} recipe {recipe.supplier} {recipe.version}")

                if recipe.type == "client":
                    async with httpx.AsyncClient(timeout=self.settings.oauth2.http_timeout) as http:
                        result = await self.dispatcher_for(recipe).run(ctx.evolve(http=http), progress, position, deadline)
                else:
                    try:
                        await browser.set_download_behavior("allow", downloads_dir)
                        await browser.block_images()
                    except BrowserError as e:
                        raise BrowserStartupError(f"Could not prepare browser: {e}") from e
                    result = await self.dispatcher_for(recipe).run(ctx, progress, position, deadline)

            get_run_logger(__name__).info(
                "recipe_finished",
                status=result.status.value,
                last_step=result.last_step_id,
                new_files=result.new_files_count,
            )
            return result
        finally:
            clear_run_context()
