"""
This module contains the browser capability used by the screenshot stage.
"""

from abc import ABC, abstractmethod


class BrowserAutomation(ABC):
    """
    Page capture capability of the execution environment.

    A session is opened with initialize, captured with screenshot and always
    released with cleanup.
    """

    @abstractmethod
    async def initialize(self, url: str) -> None:
        """Open a browser session on url."""
        pass

    @abstractmethod
    async def screenshot(self) -> bytes:
        """Capture the current page as PNG bytes."""
        pass

    @abstractmethod
    async def cleanup(self) -> None:
        """Close the session and release its resources."""
        pass
