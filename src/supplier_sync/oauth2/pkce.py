"""PKCE (RFC 7636) verifier/challenge generation and random state strings."""

import base64
import hashlib
import secrets
import string

# RFC 7636 section 4.1: ALPHA / DIGIT / "-" / "." / "_" / "~"
VERIFIER_ALPHABET = string.ascii_letters + string.digits + "-._~"
STATE_ALPHABET = string.ascii_letters + string.digits


def _random_string(length: int, alphabet: str) -> str:
    return "".join(secrets.choice(alphabet) for _ in range(length))


def random_state(length: int = 20) -> str:
    """Opaque value for the ``state`` parameter of an authorization request."""
    return _random_string(length, STATE_ALPHABET)


def code_challenge(verifier: str, method: str = "S256") -> str:
    """Derive the code challenge for ``verifier``.

    ``S256`` is the unpadded base64url encoding of the SHA-256 digest,
    ``plain`` is the verifier itself.
    """
    if method == "plain":
        return verifier
    if method != "S256":
        raise ValueError(f"Unsupported PKCE method: {method}")
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def generate_pkce_pair(length: int = 64, method: str = "S256") -> tuple[str, str]:
    """Create a code verifier of ``length`` characters and its challenge.

    Returns:
        (verifier, challenge)
    """
    if not 43 <= length <= 128:
        raise ValueError(f"PKCE verifier length must be between 43 and 128, got {length}")
    verifier = _random_string(length, VERIFIER_ALPHABET)
    return verifier, code_challenge(verifier, method)
