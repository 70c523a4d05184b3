"""Browser session and browser step handlers, built on browser-use's CDP client."""

from .events import DownloadTracker, EventHub
from .session import RecipeBrowser

__all__ = ["DownloadTracker", "EventHub", "RecipeBrowser"]
