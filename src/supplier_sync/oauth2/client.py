"""Token endpoint client for the authorization-code and refresh-token grants."""

import logging
import time
from typing import Any

import httpx
from pydantic import ValidationError

from ..exceptions import InvalidGrantError, TokenEndpointError
from ..recipes.models import OAuth2Config
from .tokens import OAuth2Tokens, TokenCache

logger = logging.getLogger(__name__)


class TokenClient:
    """Exchanges grants for tokens and persists every token set it receives.

    Usage:
        client = TokenClient(http, oauth2_config, TokenCache(config_dir / "oauth2"))
        tokens = await client.refresh(cache_key, cached.refresh_token)
    """

    def __init__(self, http: httpx.AsyncClient, config: OAuth2Config, cache: TokenCache):
        self.http = http
        self.config = config
        self.cache = cache

    async def exchange_code(self, key: str, code: str, verifier: str) -> OAuth2Tokens:
        """Exchange an authorization code for tokens (``grant_type=authorization_code``)."""
        return await self._request_tokens(
            key,
            {
                "grant_type": "authorization_code",
                "client_id": self.config.client_id,
                "code_verifier": verifier,
                "code": code,
                "redirect_uri": self.config.redirect_url,
            },
        )

    async def refresh(self, key: str, refresh_token: str) -> OAuth2Tokens:
        """Renew tokens with a refresh token (``grant_type=refresh_token``)."""
        return await self._request_tokens(
            key,
            {
                "grant_type": "refresh_token",
                "client_id": self.config.client_id,
                "refresh_token": refresh_token,
                "scope": self.config.scope,
            },
        )

    async def _request_tokens(self, key: str, payload: dict[str, Any]) -> OAuth2Tokens:
        """POST ``payload`` as JSON to the token endpoint.

        Raises:
            InvalidGrantError: on HTTP 400
            TokenEndpointError: on transport failures, other statuses and malformed bodies
        """
        try:
            response = await self.http.post(
                self.config.token_url,
                json=payload,
                headers={"Content-Type": "application/json"},
            )
        except httpx.HTTPError as e:
            raise TokenEndpointError(f"failed to send oauth2 token request: {e}") from e

        if response.status_code == 400:
            raise InvalidGrantError(f"token endpoint rejected the {payload['grant_type']} grant")
        if response.status_code != 200:
            raise TokenEndpointError(
                f"unexpected HTTP status {response.status_code} from token endpoint",
                status_code=response.status_code,
            )

        try:
            data = response.json()
            if isinstance(data, dict) and "created_at" not in data:
                data["created_at"] = int(time.time())
            tokens = OAuth2Tokens.model_validate(data)
        except (ValueError, ValidationError) as e:
            raise TokenEndpointError(f"error parsing oauth2 token response: {e}", status_code=200) from e

        self.cache.save(key, tokens)
        return tokens
