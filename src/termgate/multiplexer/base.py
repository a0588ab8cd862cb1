"""Abstract base class for terminal multiplexers.

The broker never talks to tmux directly; it goes through this interface
so the session logic can be exercised against an in-memory fake and so
another multiplexer could be swapped in without touching the broker.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

logger = logging.getLogger(__name__)


class Multiplexer(ABC):
    """Interface to the process that owns the persistent sessions.

    Session existence is authoritative here, not in the broker: a
    session can be killed from outside at any time.
    """

    @abstractmethod
    async def exists(self, label: str) -> bool:
        """Return True if a session named ``label`` is running."""
        ...

    @abstractmethod
    async def create(
        self,
        label: str,
        working_directory: str | None = None,
        startup_command: str | None = None,
    ) -> None:
        """Start a detached session.

        Creating a session that already exists is not an error.

        Raises:
            MultiplexerError: If the session cannot be created.
        """
        ...

    @abstractmethod
    async def send_keys(self, label: str, text: str, literal: bool = True) -> None:
        """Type ``text`` into the session.

        Args:
            label: Session name.
            text: Literal text, or a key name such as ``C-m`` when
                  ``literal`` is False.
            literal: Whether to send ``text`` verbatim.

        Raises:
            SessionGoneError: If the session no longer exists.
            MultiplexerError: For any other failure.
        """
        ...

    @abstractmethod
    async def capture_output(self, label: str, line_count: int) -> str:
        """Return the last ``line_count`` lines of the session's pane.

        Raises:
            SessionGoneError: If the session no longer exists.
            MultiplexerError: For any other failure.
        """
        ...

    @abstractmethod
    async def list_sessions(self) -> list[str]:
        """Return the names of all running sessions."""
        ...

    @abstractmethod
    async def kill(self, label: str) -> None:
        """Terminate a session.

        Raises:
            SessionGoneError: If the session no longer exists.
        """
        ...


class MultiplexerError(Exception):
    """Raised when a multiplexer operation fails. Callers may retry."""

    def __init__(self, message: str, label: str = "") -> None:
        super().__init__(message)
        self.label = label


class SessionGoneError(MultiplexerError):
    """Raised when the session an operation targets has disappeared."""
