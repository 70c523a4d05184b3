"""Handlers for browser recipe steps.

Every handler takes the current ``RunContext`` and its step, and returns a
``StepResult`` together with the (possibly evolved) context. A browser recipe
cannot continue past a failed step, so every error result is a hard failure
carrying the raw error text.
"""

import logging
import re
import zipfile
from pathlib import Path

import anyio

from ..context import RunContext, StepOutcome
from ..exceptions import ArchiveError, BrowserError
from ..files import copy_file, find_files, unzip_file
from ..recipes.models import (
    ClickStep,
    DownloadAllStep,
    MoveStep,
    OpenStep,
    RemoveElementStep,
    RunScriptDownloadUrlsStep,
    RunScriptStep,
    SleepStep,
    StepResult,
    TransformStep,
    TypeStep,
    WaitForStep,
)

logger = logging.getLogger(__name__)


def _fail(ctx: RunContext, error: Exception | str) -> StepOutcome:
    return StepResult.error(str(error), break_recipe=True), ctx


def _parse_seconds(value: str) -> int:
    try:
        return int(value.strip())
    except ValueError:
        return 0


async def open_page(ctx: RunContext, step: OpenStep) -> StepOutcome:
    try:
        await ctx.require_browser().navigate(step.url)
    except BrowserError as e:
        return _fail(ctx, e)
    return StepResult.success(), ctx


async def remove_element(ctx: RunContext, step: RemoveElementStep) -> StepOutcome:
    try:
        await ctx.require_browser().remove_element(step.selector)
    except BrowserError as e:
        return _fail(ctx, e)
    return StepResult.success(), ctx


async def click(ctx: RunContext, step: ClickStep) -> StepOutcome:
    try:
        await ctx.require_browser().click(step.selector)
    except BrowserError as e:
        return _fail(ctx, e)
    return StepResult.success(), ctx


async def type_text(ctx: RunContext, step: TypeStep) -> StepOutcome:
    try:
        await ctx.require_browser().type_text(step.selector, ctx.credentials.substitute(step.value))
    except BrowserError as e:
        return _fail(ctx, e)
    return StepResult.success(), ctx


async def sleep(ctx: RunContext, step: SleepStep) -> StepOutcome:
    await anyio.sleep(_parse_seconds(step.value))
    return StepResult.success(), ctx


async def wait_for(ctx: RunContext, step: WaitForStep) -> StepOutcome:
    try:
        await ctx.require_browser().wait_ready(step.selector)
    except BrowserError as e:
        return _fail(ctx, e)
    return StepResult.success(), ctx


async def download_all(ctx: RunContext, step: DownloadAllStep) -> StepOutcome:
    try:
        count = await ctx.require_browser().download_all(step.selector, step.value)
    except BrowserError as e:
        return _fail(ctx, e)
    logger.debug(f"downloadAll finished {count} downloads into {ctx.downloads_dir}")
    return StepResult.success(), ctx


def _unzip_all(directory: Path) -> int:
    archives = find_files(directory, ".zip")
    for path in archives:
        unzip_file(path, directory)
    return len(archives)


async def transform(ctx: RunContext, step: TransformStep) -> StepOutcome:
    if step.value != "unzip":
        return StepResult.success(), ctx

    try:
        count = await anyio.to_thread.run_sync(_unzip_all, ctx.downloads_dir)
    except (OSError, ValueError, zipfile.BadZipFile) as e:
        return _fail(ctx, e)
    logger.debug(f"Extracted {count} zip archives in {ctx.downloads_dir}")
    return StepResult.success(), ctx


def _move_matching(ctx: RunContext, pattern: re.Pattern[str]) -> int:
    moved = 0
    for path in sorted(p for p in ctx.downloads_dir.rglob("*") if p.is_file()):
        if not pattern.search(path.name):
            continue
        if ctx.archive.file_exists(path):
            logger.debug(f"Skipping already archived file {path.name}")
            continue
        target = ctx.documents_dir / path.name
        copy_file(path, target)
        ctx.archive.add_file(target)
        moved += 1
    return moved


async def move(ctx: RunContext, step: MoveStep) -> StepOutcome:
    """Copy matching staged files that the archive does not know yet into the document store."""
    ctx = ctx.evolve(new_files_count=0)
    try:
        pattern = re.compile(step.value)
    except re.error as e:
        return _fail(ctx, f"invalid file pattern {step.value!r}: {e}")

    try:
        moved = await anyio.to_thread.run_sync(_move_matching, ctx, pattern)
    except (OSError, ArchiveError) as e:
        return _fail(ctx, e)

    logger.info(f"Moved {moved} new documents to {ctx.documents_dir}")
    return StepResult.success(), ctx.evolve(new_files_count=moved)


async def run_script(ctx: RunContext, step: RunScriptStep) -> StepOutcome:
    try:
        await ctx.require_browser().evaluate(step.value)
    except BrowserError as e:
        return _fail(ctx, e)
    return StepResult.success(), ctx


async def run_script_download_urls(ctx: RunContext, step: RunScriptDownloadUrlsStep) -> StepOutcome:
    """Evaluate a script producing URLs and open each one so the browser downloads it."""
    browser = ctx.require_browser()
    try:
        urls = await browser.evaluate(f"Object.values({step.value})")
        await browser.set_download_behavior("allowAndName", ctx.downloads_dir)
        for url in urls or []:
            logger.debug(f"Downloading {url}")
            await browser.navigate(str(url))
    except BrowserError as e:
        return _fail(ctx, e)
    return StepResult.success(), ctx
