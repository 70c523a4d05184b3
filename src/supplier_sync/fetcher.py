"""Authenticated fetcher behind the ``oauth2-post-and-get-items`` step.

Queries a supplier API with the adopted access token, extracts document ids
(and optionally file names) from the JSON answer, downloads every document
into staging and copies the ones the archive does not know into the
document store.
"""

import logging
from pathlib import Path

import anyio
import httpx

from .context import RunContext, StepOutcome
from .exceptions import ArchiveError
from .files import contained_path, copy_file
from .recipes.jsonpath import extract_json_values
from .recipes.models import OAuth2PostAndGetItemsStep, StepResult

logger = logging.getLogger(__name__)

TOKEN_PLACEHOLDER = "{{ token }}"
ID_PLACEHOLDER = "{{ id }}"


def build_headers(headers: dict[str, str], access_token: str) -> dict[str, str]:
    """Request headers with ``{{ token }}`` substituted in ``Authorization``."""
    result = {"Content-Type": "application/json"}
    for name, value in headers.items():
        if name == "Authorization":
            value = value.replace(TOKEN_PLACEHOLDER, access_token)
        result[name] = value
    return result


async def _download(http: httpx.AsyncClient, method: str, url: str, headers: dict[str, str], target: Path) -> bool:
    """Stream one document to ``target``; False unless the server answered 200."""
    async with http.stream(method, url, headers=headers) as response:
        if response.status_code != 200:
            logger.warning(f"Document request {url} answered HTTP {response.status_code}")
            return False
        target.parent.mkdir(parents=True, exist_ok=True)
        with target.open("wb") as f:
            async for chunk in response.aiter_bytes():
                f.write(chunk)
    return True


def _archive_staged(ctx: RunContext, staged: Path, filename: str) -> bool:
    """Copy ``staged`` into the store unless archived; True if it was new."""
    if ctx.archive.file_exists(staged):
        return False
    target = contained_path(ctx.documents_dir, filename)
    copy_file(staged, target)
    ctx.archive.add_file(target)
    return True


async def post_and_get_items(ctx: RunContext, step: OAuth2PostAndGetItemsStep) -> StepOutcome:
    http = ctx.require_http()
    logger.debug(f"Requesting document list from {step.url}")

    try:
        response = await http.request(
            step.method,
            step.url,
            content=step.body.encode("utf-8"),
            headers=build_headers(step.headers, ctx.access_token),
        )
    except httpx.HTTPError as e:
        return StepResult.error(f"error sending post request: {e}", break_recipe=True), ctx

    if response.status_code == 400:
        return StepResult.error("unauthorized request (HTTP 400)"), ctx
    if response.status_code != 200:
        return StepResult.error(f"unexpected HTTP status {response.status_code}"), ctx

    ctx = ctx.evolve(new_files_count=0)
    try:
        data = response.json()
    except ValueError as e:
        return StepResult.error(f"invalid JSON in response: {e}", break_recipe=True), ctx

    ids = extract_json_values(data, step.extract_document_ids)
    if not ids:
        return StepResult.error("No content ids found"), ctx

    filenames: list[str] = []
    if step.extract_document_filenames:
        filenames = extract_json_values(data, step.extract_document_filenames)

    document_headers = build_headers(step.document_request_headers, ctx.access_token)
    new_files = 0
    for i, document_id in enumerate(ids):
        filename = filenames[i] if i < len(filenames) else f"{document_id}.pdf"
        try:
            staged = contained_path(ctx.downloads_dir, filename)
        except ValueError as e:
            logger.warning(f"Refusing document {document_id}: {e}")
            return StepResult.error(f"invalid document file name {filename!r}"), ctx.evolve(new_files_count=new_files)
        url = step.document_url.replace(ID_PLACEHOLDER, document_id)

        try:
            downloaded = await _download(http, step.document_request_method, url, document_headers, staged)
        except (httpx.HTTPError, OSError) as e:
            logger.warning(f"Downloading {url} failed: {e}")
            downloaded = False
        if not downloaded:
            return StepResult.error("Error while downloading invoices"), ctx.evolve(new_files_count=new_files)

        try:
            if await anyio.to_thread.run_sync(_archive_staged, ctx, staged, filename):
                new_files += 1
        except OSError as e:
            return StepResult.error(f"Error while copying file: {e}"), ctx.evolve(new_files_count=new_files)
        except ArchiveError as e:
            return StepResult.error(f"Error while adding file {filename} to document archive: {e}"), ctx.evolve(
                new_files_count=new_files
            )

    logger.info(f"Fetched {len(ids)} documents, {new_files} new")
    return StepResult.success(), ctx.evolve(new_files_count=new_files)
