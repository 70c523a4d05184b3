"""OAuth2 authorization-code flow with PKCE, token endpoint client and token cache."""

from .client import TokenClient
from .pkce import code_challenge, generate_pkce_pair, random_state
from .tokens import OAuth2Tokens, TokenCache

__all__ = [
    "OAuth2Tokens",
    "TokenCache",
    "TokenClient",
    "code_challenge",
    "generate_pkce_pair",
    "random_state",
]
