"""CLI interface for supplier-sync."""

import asyncio
from pathlib import Path
from typing import Optional

import typer

from .archive import HashDocumentArchive
from .config import settings
from .credentials import EnvCredentialSource
from .engine import BatchPosition, RecipeEngine
from .exceptions import BrowserStartupError, RecipeLoadError
from .observability import setup_structured_logging
from .progress import LoggingProgressSink
from .recipes.models import RecipeResult
from .recipes.store import RecipeDatabase, load_recipes

app = typer.Typer(help="Retrieve invoices from supplier portals by running recipes")


def _load_database(recipes_file: Optional[Path]) -> RecipeDatabase:
    path = recipes_file or (Path(settings.paths.recipes_file).expanduser() if settings.paths.recipes_file else None)
    if path is None:
        print("Error: no recipe file given (use --recipes or SUPPLIER_SYNC_PATHS__RECIPES_FILE)")
        raise typer.Exit(code=2)
    try:
        return load_recipes(path)
    except RecipeLoadError as e:
        print(f"Error: {e}")
        raise typer.Exit(code=2) from e


@app.command()
def sync(
    recipes_file: Optional[Path] = typer.Option(None, "--recipes", "-r", help="Recipe database file (JSON or YAML)"),
    supplier: Optional[list[str]] = typer.Option(None, "--supplier", "-s", help="Only run recipes for these suppliers"),
) -> None:
    """Run recipes one after another and report the result of each."""
    setup_structured_logging(settings.logging.level, json_output=settings.logging.format == "json")
    database = _load_database(recipes_file)
    try:
        recipes = database.select(supplier)
    except RecipeLoadError as e:
        print(f"Error: {e}")
        raise typer.Exit(code=2) from e

    config_dir = settings.get_config_dir()
    documents_root = settings.get_documents_dir()
    archive = HashDocumentArchive(config_dir / "archive.json", documents_root)
    engine = RecipeEngine(settings, archive, documents_root=documents_root, config_dir=config_dir)
    credential_source = EnvCredentialSource()
    progress = LoggingProgressSink()

    async def _sync() -> list[RecipeResult]:
        results = []
        total_steps = sum(len(recipe.steps) for recipe in recipes)
        completed = 0
        for recipe in recipes:
            try:
                credentials = credential_source.get_credentials(recipe.supplier)
            except KeyError as e:
                print(f"x {recipe.supplier}: skipped, {e.args[0]}")
                completed += len(recipe.steps)
                continue
            position = BatchPosition(completed_before=completed, total_steps=total_steps)
            result = await engine.run_recipe(recipe, credentials, progress, position)
            print(result.status_text_formatted)
            if result.last_error_message:
                print(f"  {result.last_step_id}: {result.last_error_message}")
            results.append(result)
            completed += len(recipe.steps)
        return results

    try:
        results = asyncio.run(_sync())
    except BrowserStartupError as e:
        print(f"Error: {e}")
        raise typer.Exit(code=1) from e

    if any(not result.ok for result in results):
        raise typer.Exit(code=1)


@app.command()
def recipes(
    recipes_file: Optional[Path] = typer.Option(None, "--recipes", "-r", help="Recipe database file (JSON or YAML)"),
) -> None:
    """List the recipes in a recipe database."""
    database = _load_database(recipes_file)
    if database.version:
        print(f"Recipe database version {database.version}")
    for recipe in database.recipes:
        print(f"{recipe.supplier} {recipe.version} ({recipe.type}, {len(recipe.steps)} steps)")


@app.command()
def config() -> None:
    """Show current configuration."""
    print(f"Documents: {settings.paths.documents_dir or '(default)'}")
    print(f"Config Dir: {settings.paths.config_dir or '(default)'}")
    print(f"Recipes: {settings.paths.recipes_file or '(none)'}")
    print(f"Headless: {settings.browser.headless}")
    print(f"Browser Step Timeout: {settings.engine.browser_step_timeout}s")
    print(f"OAuth2 Step Timeout: {settings.engine.client_step_timeout}s")
    print(f"Safety Timeout: {settings.browser.safety_timeout}s")
    print(f"Download Limit: {settings.engine.download_click_limit}")
    print(f"Abort After Refresh: {settings.oauth2.abort_after_refresh}")
    print(f"Log Level: {settings.logging.level}")


if __name__ == "__main__":
    app()
