"""Terminal multiplexer adapters for termgate.

Public API:
    Multiplexer -- Abstract base class
    MultiplexerError, SessionGoneError -- Failure types
    TmuxMultiplexer -- tmux backend
"""

from termgate.multiplexer.base import Multiplexer, MultiplexerError, SessionGoneError

__all__ = ["Multiplexer", "MultiplexerError", "SessionGoneError", "TmuxMultiplexer"]


def __getattr__(name: str) -> type:
    """Lazy import for the concrete backend."""
    if name == "TmuxMultiplexer":
        from termgate.multiplexer.tmux import TmuxMultiplexer
        return TmuxMultiplexer
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
