"""termgate -- Access-controlled command broker for tmux sessions.

This package lets authenticated users run shell commands against named,
persistent terminal sessions. Every request passes a policy layer
(network, identity, rate, command pattern and working-directory checks)
before it reaches the session broker, which owns the tmux sessions.
"""

__version__ = "0.1.0"
