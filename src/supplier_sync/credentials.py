"""Supplier login credentials and the sources that provide them."""

import os
import re
from dataclasses import dataclass, field
from typing import Protocol

# Literal placeholders recipes use in `type` step values
USERNAME_PLACEHOLDER = "{{ username }}"
PASSWORD_PLACEHOLDER = "{{ password }}"
TOTP_PLACEHOLDER = "{{ totp }}"


@dataclass(frozen=True)
class Credentials:
    """Login data for one supplier account. Read-only during a run."""

    id: str
    username: str
    password: str = field(repr=False)
    totp: str = field(default="", repr=False)

    def substitute(self, value: str) -> str:
        """Replace credential placeholders in ``value`` verbatim."""
        value = value.replace(USERNAME_PLACEHOLDER, self.username)
        value = value.replace(PASSWORD_PLACEHOLDER, self.password)
        return value.replace(TOTP_PLACEHOLDER, self.totp)


class CredentialSource(Protocol):
    """Provides credentials before a recipe run starts."""

    def get_credentials(self, supplier: str) -> Credentials: ...


class EnvCredentialSource:
    """Reads credentials from ``SUPPLIER_SYNC_<SUPPLIER>_*`` environment variables.

    Example for supplier ``acme-cloud``::

        SUPPLIER_SYNC_ACME_CLOUD_USERNAME=me@example.com
        SUPPLIER_SYNC_ACME_CLOUD_PASSWORD=...
        SUPPLIER_SYNC_ACME_CLOUD_TOTP=123456      # optional
        SUPPLIER_SYNC_ACME_CLOUD_ID=acme-main     # optional, defaults to the username
    """

    def __init__(self, prefix: str = "SUPPLIER_SYNC_"):
        self.prefix = prefix

    def _var(self, supplier: str, name: str) -> str:
        slug = re.sub(r"[^A-Z0-9]+", "_", supplier.upper()).strip("_")
        return f"{self.prefix}{slug}_{name}"

    def get_credentials(self, supplier: str) -> Credentials:
        username_var = self._var(supplier, "USERNAME")
        username = os.environ.get(username_var)
        if not username:
            raise KeyError(f"No credentials for supplier {supplier!r} ({username_var} is not set)")

        return Credentials(
            id=os.environ.get(self._var(supplier, "ID"), username),
            username=username,
            password=os.environ.get(self._var(supplier, "PASSWORD"), ""),
            totp=os.environ.get(self._var(supplier, "TOTP"), ""),
        )
