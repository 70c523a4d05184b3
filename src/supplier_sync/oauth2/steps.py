"""Handlers for the OAuth2 recipe steps.

``oauth2-setup`` stores the client configuration on the run context,
``oauth2-check-tokens`` adopts a cached (or refreshed) access token and
``oauth2-authenticate`` performs a browser-driven authorization-code login
with PKCE when no token was adopted. Failures here are soft: the recipe goes
on so a later step can still succeed.
"""

import asyncio
import logging
from urllib.parse import parse_qs, urlencode, urlparse

from ..browser.events import REQUEST_WILL_BE_SENT, RESPONSE_RECEIVED
from ..context import RunContext, StepOutcome
from ..exceptions import BrowserError, OAuth2Error, TokenCacheError
from ..recipes.models import (
    OAuth2AuthenticateStep,
    OAuth2CheckTokensStep,
    OAuth2Config,
    OAuth2SetupStep,
    StepResult,
)
from .client import TokenClient
from .pkce import generate_pkce_pair, random_state
from .tokens import TokenCache

logger = logging.getLogger(__name__)

NO_TOKEN_MESSAGE = "No access token found. New OAuth2 login needed."
REFRESH_ABORT_MESSAGE = "Error getting oauth2 access token with refresh token"

# Login form of the supplier identity provider
IDENTITY_INPUT = "#form-input-identity"
CREDENTIAL_INPUT = "#form-input-credential"
PASSCODE_INPUT = "#form-input-passcode"
CONTINUE_BUTTON = "#form-submit-continue"
SUBMIT_BUTTON = "#form-submit"
PASSCODE_WAIT = 5.0


def _token_client(ctx: RunContext, config: OAuth2Config) -> TokenClient:
    return TokenClient(ctx.require_http(), config, TokenCache(ctx.config_dir / "oauth2"))


async def _pause(seconds: float) -> None:
    await asyncio.sleep(seconds)


async def setup(ctx: RunContext, step: OAuth2SetupStep) -> StepOutcome:
    logger.debug(f"OAuth2 setup, auth url {step.oauth2.auth_url}")
    return StepResult.success("Successfully set up OAuth2 settings."), ctx.evolve(oauth2=step.oauth2)


async def check_tokens(ctx: RunContext, step: OAuth2CheckTokensStep) -> StepOutcome:
    """Adopt a cached access token, refreshing it when it has expired."""
    if ctx.oauth2 is None:
        return StepResult.error("OAuth2 settings missing, oauth2-setup must run first"), ctx

    key = ctx.token_cache_key
    cache = TokenCache(ctx.config_dir / "oauth2")
    tokens = cache.load(key)
    if tokens is None:
        logger.info("No OAuth2 tokens in cache")
        return StepResult.error(NO_TOKEN_MESSAGE), ctx

    if tokens.is_valid():
        logger.info("Found valid oauth2 access token in cache")
        return StepResult.success("Found valid oauth2 access token in cache"), ctx.evolve(access_token=tokens.access_token)

    logger.info("Cached oauth2 access token expired, trying refresh token")
    try:
        refreshed = await _token_client(ctx, ctx.oauth2).refresh(key, tokens.refresh_token)
    except (OAuth2Error, TokenCacheError) as e:
        logger.warning(f"Refreshing oauth2 access token failed: {e}")
        return StepResult.error(NO_TOKEN_MESSAGE), ctx

    ctx = ctx.evolve(access_token=refreshed.access_token)
    if ctx.settings.oauth2.abort_after_refresh:
        return StepResult.error(REFRESH_ABORT_MESSAGE, break_recipe=True), ctx
    return StepResult.success("Refreshed oauth2 access token"), ctx


def authorization_url(config: OAuth2Config, state: str, challenge: str) -> str:
    params = {
        "client_id": config.client_id,
        "prompt": "login",
        "redirect_uri": config.redirect_url,
        "scope": config.scope,
        "response_type": "code",
        "state": state,
        "code_challenge": challenge,
        "code_challenge_method": config.pkce_method,
    }
    return f"{config.auth_url}?{urlencode(sorted(params.items()))}"


def _log_location_header(event: dict, session_id: str | None) -> None:
    headers = event.get("response", {}).get("headers", {})
    location = headers.get("Location") or headers.get("location")
    if location:
        logger.debug(f"Redirect location: {location}")


async def _login(ctx: RunContext, login_url: str) -> str:
    """Fill in the login form and return the URL the browser was redirected to."""
    browser = ctx.require_browser()
    credentials = ctx.credentials
    redirects: list[str] = []
    redirect_prefix = ctx.oauth2.redirect_url if ctx.oauth2 else ""

    def capture_redirect(event: dict, session_id: str | None) -> None:
        url = event.get("request", {}).get("url", "")
        if redirect_prefix and url.startswith(redirect_prefix):
            redirects.append(url)

    with (
        browser.hub.listen(RESPONSE_RECEIVED, _log_location_header),
        browser.hub.listen(REQUEST_WILL_BE_SENT, capture_redirect),
    ):
        await browser.navigate(login_url, wait_settled=False)
        await browser.wait_ready(IDENTITY_INPUT)
        await _pause(1)
        await browser.click(IDENTITY_INPUT)
        await browser.type_text(IDENTITY_INPUT, credentials.username)
        await _pause(1)
        await browser.click(CONTINUE_BUTTON)
        await browser.wait_visible(CREDENTIAL_INPUT)
        await _pause(3)
        await browser.type_text(CREDENTIAL_INPUT, credentials.password)
        await _pause(2)
        await browser.click(CONTINUE_BUTTON)
        await _pause(2)

        try:
            await browser.wait_visible(PASSCODE_INPUT, timeout=PASSCODE_WAIT)
        except TimeoutError:
            logger.debug("No second factor requested")
        else:
            await browser.type_text(PASSCODE_INPUT, credentials.totp)
            await browser.click(SUBMIT_BUTTON)

        await _pause(2)
        if redirects:
            return redirects[-1]
        return await browser.location()


async def authenticate(ctx: RunContext, step: OAuth2AuthenticateStep) -> StepOutcome:
    """Log in through the browser and exchange the authorization code for tokens."""
    if ctx.access_token:
        return StepResult.success(), ctx
    if ctx.oauth2 is None:
        return StepResult.error("OAuth2 settings missing, oauth2-setup must run first"), ctx

    config = ctx.oauth2
    verifier, challenge = generate_pkce_pair(config.pkce_verifier_length, config.pkce_method)
    login_url = authorization_url(config, random_state(20), challenge)

    try:
        final_url = await _login(ctx, login_url)
    except BrowserError as e:
        logger.error(f"Error while logging in: {e}")
        return StepResult.error(f"error while logging in: {e}"), ctx

    code = parse_qs(urlparse(final_url).query).get("code", [""])[0]
    if not code:
        return StepResult.error("error while logging in: no authorization code in redirect URL"), ctx

    try:
        tokens = await _token_client(ctx, config).exchange_code(ctx.token_cache_key, code, verifier)
    except (OAuth2Error, TokenCacheError) as e:
        logger.error(f"Error while getting fresh OAuth2 access token: {e}")
        return StepResult.error(str(e)), ctx

    logger.info("Successfully retrieved new OAuth2 access tokens.")
    return StepResult.success("Successfully retrieved OAuth2 tokens."), ctx.evolve(access_token=tokens.access_token)
