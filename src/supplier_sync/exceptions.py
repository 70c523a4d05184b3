"""Custom exceptions for supplier-sync."""


class SupplierSyncError(Exception):
    """Base exception for supplier-sync errors."""

    pass


class RecipeLoadError(SupplierSyncError):
    """Raised when a recipe database cannot be read or validated."""

    pass


class BrowserError(SupplierSyncError):
    """Raised when browser operations fail."""

    pass


class BrowserProtocolError(BrowserError):
    """Raised when Chrome rejects a CDP command, e.g. because the page navigated away."""

    pass


class BrowserStartupError(BrowserError):
    """Raised when the browser or its CDP session cannot be created.

    No recipe can run without a browser, so this is surfaced to the caller
    instead of being turned into a step result.
    """

    pass


class OAuth2Error(SupplierSyncError):
    """Base exception for OAuth2 token endpoint failures."""

    pass


class InvalidGrantError(OAuth2Error):
    """Raised when the token endpoint rejects a grant (HTTP 400)."""

    pass


class TokenEndpointError(OAuth2Error):
    """Raised for any other token endpoint failure."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class TokenCacheError(SupplierSyncError):
    """Raised when cached OAuth2 tokens cannot be read or written."""

    pass


class ArchiveError(SupplierSyncError):
    """Raised when the document archive cannot register a file."""

    pass
