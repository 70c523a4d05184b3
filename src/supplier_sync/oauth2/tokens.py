"""OAuth2 token model and the on-disk token cache."""

import base64
import hashlib
import logging
import time
from pathlib import Path

from pydantic import BaseModel, ConfigDict, ValidationError

from ..exceptions import TokenCacheError
from ..files import atomic_write_text

logger = logging.getLogger(__name__)


class OAuth2Tokens(BaseModel):
    """Tokens returned by a token endpoint, stamped with their creation time."""

    model_config = ConfigDict(extra="ignore")

    access_token: str
    refresh_token: str = ""
    created_at: int = 0  # Seconds since epoch
    expires_in: int = 0  # Seconds

    def is_valid(self, now: float | None = None) -> bool:
        """True while ``created_at + expires_in`` lies in the future."""
        if now is None:
            now = time.time()
        return self.created_at + self.expires_in > now


class TokenCache:
    """One JSON file per cache key under ``directory``, readable only by the owner.

    Keys contain separators such as ``|``, so file names are the URL-safe
    SHA-256 digest of the key.
    """

    def __init__(self, directory: Path):
        self.directory = directory

    def _path(self, key: str) -> Path:
        digest = hashlib.sha256(key.encode("utf-8")).digest()
        name = base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")
        return self.directory / f"{name}.json"

    def load(self, key: str) -> OAuth2Tokens | None:
        """Return cached tokens for ``key``, or None if there are none usable."""
        path = self._path(key)
        if not path.exists():
            return None
        try:
            return OAuth2Tokens.model_validate_json(path.read_text(encoding="utf-8"))
        except (OSError, ValidationError) as e:
            logger.warning(f"Ignoring unreadable token cache {path.name}: {e}")
            return None

    def save(self, key: str, tokens: OAuth2Tokens) -> Path:
        path = self._path(key)
        try:
            atomic_write_text(path, tokens.model_dump_json(indent=2), mode=0o600)
        except OSError as e:
            raise TokenCacheError(f"Could not store OAuth2 tokens: {e}") from e
        logger.debug(f"Stored OAuth2 tokens in {path}")
        return path
