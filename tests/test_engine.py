"""Tests for the step dispatcher and the recipe engine."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from supplier_sync import fetcher
from supplier_sync.browser import steps as browser_steps
from supplier_sync.engine import BatchPosition, RecipeEngine, StepDispatcher, new_documents_text, resolve_handler
from supplier_sync.exceptions import BrowserStartupError
from supplier_sync.oauth2 import steps as oauth2_steps
from supplier_sync.progress import ProgressUpdate, StepStarted
from supplier_sync.recipes.models import Recipe, StepResult, StepStatus

pytestmark = pytest.mark.anyio


@pytest.fixture
def recipe() -> Recipe:
    return Recipe.model_validate(
        {
            "supplier": "Acme",
            "version": "1.0.0",
            "steps": [
                {"action": "open", "url": "https://acme.example", "description": "Open portal"},
                {"action": "click", "selector": "#invoices", "description": "Go to invoices"},
                {"action": "move", "value": "\\.pdf$", "description": "Move documents"},
            ],
        }
    )


class RecordingSink:
    def __init__(self):
        self.events = []

    def send(self, event):
        self.events.append(event)


def succeed(message=""):
    async def handler(ctx, step):
        return StepResult.success(message), ctx

    return handler


def fail(message, break_recipe):
    async def handler(ctx, step):
        return StepResult.error(message, break_recipe=break_recipe), ctx

    return handler


def add_files(count):
    async def handler(ctx, step):
        return StepResult.success(), ctx.evolve(new_files_count=count)

    return handler


def recording(calls, handler):
    async def wrapper(ctx, step):
        calls.append(step.action)
        return await handler(ctx, step)

    return wrapper


class TestNewDocumentsText:
    def test_pluralization(self):
        assert new_documents_text(0) == "No new documents"
        assert new_documents_text(1) == "One new document"
        assert new_documents_text(2) == "2 new documents"


class TestResolveHandler:
    def test_every_action_has_a_handler(self, recipe):
        assert resolve_handler(recipe.steps[0]) is browser_steps.open_page
        assert resolve_handler(recipe.steps[1]) is browser_steps.click
        assert resolve_handler(recipe.steps[2]) is browser_steps.move

    def test_client_actions(self):
        client = Recipe.model_validate(
            {
                "supplier": "Cloudy",
                "version": "1",
                "steps": [
                    {"action": "oauth2-check-tokens"},
                    {"action": "oauth2-authenticate"},
                    {
                        "action": "oauth2-post-and-get-items",
                        "url": "https://api.example/list",
                        "extractDocumentIds": "id",
                        "documentUrl": "https://api.example/{{ id }}",
                    },
                ],
            }
        )
        assert resolve_handler(client.steps[0]) is oauth2_steps.check_tokens
        assert resolve_handler(client.steps[1]) is oauth2_steps.authenticate
        assert resolve_handler(client.steps[2]) is fetcher.post_and_get_items


class TestStepDispatcher:
    async def test_all_steps_succeed(self, recipe, make_context):
        dispatcher = StepDispatcher(
            step_timeout=5,
            purge_staging=True,
            handlers={"open": succeed(), "click": succeed(), "move": add_files(2)},
        )

        result = await dispatcher.run(make_context(recipe), RecordingSink())

        assert result.status is StepStatus.SUCCESS
        assert result.ok
        assert result.new_files_count == 2
        assert result.status_text == "Acme: 2 new documents"
        assert result.status_text_formatted.startswith("- ")
        assert "Acme" in result.status_text_formatted
        assert result.last_step_id == "Acme-1.0.0-3-move"
        assert result.last_step_description == "Move documents"

    async def test_hard_failure_stops_the_recipe(self, recipe, make_context):
        calls = []
        ctx = make_context(recipe)
        (ctx.downloads_dir / "partial.pdf").write_bytes(b"partial")
        dispatcher = StepDispatcher(
            step_timeout=5,
            purge_staging=True,
            handlers={
                "open": recording(calls, succeed()),
                "click": recording(calls, fail("node not found", break_recipe=True)),
                "move": recording(calls, add_files(1)),
            },
        )

        result = await dispatcher.run(ctx, RecordingSink())

        assert calls == ["open", "click"]
        assert result.status is StepStatus.ERROR
        assert result.status_text == "Acme aborted with error."
        assert result.status_text_formatted.startswith("x ")
        assert result.last_step_id == "Acme-1.0.0-2-click"
        assert result.last_error_message == "node not found"
        assert list(ctx.downloads_dir.iterdir()) == []

    async def test_soft_failure_continues_and_later_step_overwrites(self, recipe, make_context):
        calls = []
        dispatcher = StepDispatcher(
            step_timeout=5,
            purge_staging=False,
            handlers={
                "open": recording(calls, succeed()),
                "click": recording(calls, fail("no token", break_recipe=False)),
                "move": recording(calls, add_files(1)),
            },
        )

        result = await dispatcher.run(make_context(recipe), RecordingSink())

        assert calls == ["open", "click", "move"]
        assert result.ok
        assert result.status_text == "Acme: One new document"

    async def test_soft_failure_on_last_step_is_reported(self, recipe, make_context):
        dispatcher = StepDispatcher(
            step_timeout=5,
            purge_staging=False,
            handlers={"open": succeed(), "click": succeed(), "move": fail("nothing matched", break_recipe=False)},
        )

        result = await dispatcher.run(make_context(recipe), RecordingSink())

        assert result.status is StepStatus.ERROR
        assert result.last_error_message == "nothing matched"
        assert result.last_step_id == "Acme-1.0.0-3-move"

    async def test_timeout_purges_staging_and_cancels_step(self, recipe, make_context):
        cancelled = asyncio.Event()

        async def hang(ctx, step):
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                cancelled.set()
                raise
            return StepResult.success(), ctx

        ctx = make_context(recipe)
        (ctx.downloads_dir / "half.crdownload").write_bytes(b"...")
        dispatcher = StepDispatcher(step_timeout=0.05, purge_staging=True, handlers={"open": succeed(), "click": hang})

        result = await dispatcher.run(ctx, RecordingSink())

        assert result.status is StepStatus.ERROR
        assert result.status_text == "Acme aborted with timeout."
        assert result.last_step_id == "Acme-1.0.0-2-click"
        assert result.last_step_description == "Go to invoices"
        assert list(ctx.downloads_dir.iterdir()) == []
        await asyncio.wait_for(cancelled.wait(), timeout=1)

    async def test_timeout_without_purge_keeps_staging(self, recipe, make_context):
        async def hang(ctx, step):
            await asyncio.sleep(10)
            return StepResult.success(), ctx

        ctx = make_context(recipe)
        staged = ctx.downloads_dir / "invoice.pdf"
        staged.write_bytes(b"%PDF")
        dispatcher = StepDispatcher(step_timeout=0.05, purge_staging=False, handlers={"open": hang})

        result = await dispatcher.run(ctx, RecordingSink())

        assert result.status_text == "Acme aborted with timeout."
        assert staged.exists()

    async def test_deadline_caps_step_timeout(self, recipe, make_context):
        async def hang(ctx, step):
            await asyncio.sleep(10)
            return StepResult.success(), ctx

        dispatcher = StepDispatcher(step_timeout=60, purge_staging=True, handlers={"open": hang})
        deadline = asyncio.get_running_loop().time() + 0.05

        result = await asyncio.wait_for(dispatcher.run(make_context(recipe), RecordingSink(), deadline=deadline), timeout=5)

        assert result.status_text == "Acme aborted with timeout."
        assert result.last_step_id == "Acme-1.0.0-1-open"

    async def test_handler_exception_becomes_hard_failure(self, recipe, make_context):
        async def explode(ctx, step):
            raise RuntimeError("CDP connection closed")

        calls = []
        dispatcher = StepDispatcher(
            step_timeout=5,
            purge_staging=True,
            handlers={"open": explode, "click": recording(calls, succeed())},
        )

        result = await dispatcher.run(make_context(recipe), RecordingSink())

        assert calls == []
        assert result.status is StepStatus.ERROR
        assert result.last_error_message == "CDP connection closed"

    async def test_context_is_threaded_between_steps(self, recipe, make_context):
        seen = []

        async def set_token(ctx, step):
            return StepResult.success(), ctx.evolve(access_token="abc")

        async def read_token(ctx, step):
            seen.append(ctx.access_token)
            return StepResult.success(), ctx

        dispatcher = StepDispatcher(
            step_timeout=5,
            purge_staging=False,
            handlers={"open": set_token, "click": read_token, "move": read_token},
        )

        await dispatcher.run(make_context(recipe), RecordingSink())

        assert seen == ["abc", "abc"]

    async def test_progress_events(self, recipe, make_context):
        sink = RecordingSink()
        dispatcher = StepDispatcher(
            step_timeout=5,
            purge_staging=False,
            handlers={"open": succeed(), "click": succeed(), "move": succeed()},
        )

        await dispatcher.run(make_context(recipe), sink, BatchPosition(completed_before=2, total_steps=10))

        started = [e for e in sink.events if isinstance(e, StepStarted)]
        updates = [e.percent for e in sink.events if isinstance(e, ProgressUpdate)]
        assert [e.title for e in started] == [
            "Downloading invoices from Acme (1/3):",
            "Downloading invoices from Acme (2/3):",
            "Downloading invoices from Acme (3/3):",
        ]
        assert started[0].description == "Open portal"
        assert updates == pytest.approx([0.3, 0.4, 0.5])
        assert isinstance(sink.events[0], StepStarted)
        assert isinstance(sink.events[1], ProgressUpdate)

    async def test_no_progress_update_after_hard_failure(self, recipe, make_context):
        sink = RecordingSink()
        dispatcher = StepDispatcher(step_timeout=5, purge_staging=False, handlers={"open": fail("boom", break_recipe=True)})

        await dispatcher.run(make_context(recipe), sink)

        assert [type(e) for e in sink.events] == [StepStarted]


class FakeBrowser:
    def __init__(self, headless):
        self.headless = headless
        self.set_download_behavior = AsyncMock()
        self.block_images = AsyncMock()
        self.entered = False
        self.exited = False

    async def __aenter__(self):
        self.entered = True
        return self

    async def __aexit__(self, *exc_info):
        self.exited = True


class TestRecipeEngine:
    async def test_browser_recipe_prepares_browser(self, app_settings, archive, credentials, tmp_path):
        browsers = []

        def factory(headless):
            browsers.append(FakeBrowser(headless))
            return browsers[-1]

        recipe = Recipe.model_validate(
            {"supplier": "Acme", "version": "1.0.0", "steps": [{"action": "sleep", "value": "0"}]}
        )
        engine = RecipeEngine(app_settings, archive, documents_root=tmp_path / "docs", config_dir=tmp_path / "config", browser_factory=factory)

        result = await engine.run_recipe(recipe, credentials)

        assert result.ok
        assert result.status_text == "Acme: No new documents"
        browser = browsers[0]
        assert browser.headless is True
        assert browser.entered and browser.exited
        browser.set_download_behavior.assert_awaited_once_with("allow", tmp_path / "docs" / "Acme" / "_tmp")
        browser.block_images.assert_awaited_once()

    async def test_client_recipe_runs_with_visible_browser(self, app_settings, archive, credentials, tmp_path):
        browsers = []

        def factory(headless):
            browsers.append(FakeBrowser(headless))
            return browsers[-1]

        recipe = Recipe.model_validate(
            {
                "supplier": "Cloudy",
                "version": "1.0.0",
                "steps": [
                    {
                        "action": "oauth2-setup",
                        "oauth2": {
                            "authUrl": "https://id.example/authorize",
                            "tokenUrl": "https://id.example/token",
                            "redirectUrl": "https://app.example/callback",
                            "clientId": "c1",
                        },
                    }
                ],
            }
        )
        engine = RecipeEngine(app_settings, archive, documents_root=tmp_path / "docs", config_dir=tmp_path / "config", browser_factory=factory)

        result = await engine.run_recipe(recipe, credentials)

        assert result.ok
        assert browsers[0].headless is False
        browsers[0].set_download_behavior.assert_not_awaited()

    async def test_browser_startup_failure_is_raised(self, app_settings, archive, credentials, tmp_path):
        class BrokenBrowser(FakeBrowser):
            async def __aenter__(self):
                raise BrowserStartupError("Could not start browser: chrome not found")

        recipe = Recipe.model_validate(
            {"supplier": "Acme", "version": "1.0.0", "steps": [{"action": "sleep", "value": "0"}]}
        )
        engine = RecipeEngine(
            app_settings,
            archive,
            documents_root=tmp_path / "docs",
            config_dir=tmp_path / "config",
            browser_factory=BrokenBrowser,
        )

        with pytest.raises(BrowserStartupError, match="chrome not found"):
            await engine.run_recipe(recipe, credentials)
