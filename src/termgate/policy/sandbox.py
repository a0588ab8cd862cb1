"""Working-directory sandbox for ``cd`` commands.

A target's working directory is its sandbox root: sessions may move
around below it but never above or beside it. Paths are resolved
lexically (POSIX semantics, no filesystem access), since the directory
the shell ends up in is decided by the remote session, not by us.
"""

from __future__ import annotations

import posixpath
import re

from termgate.domain.models import NavigationDecision

CD_COMMAND = re.compile(r"^cd\s+(.+)$", re.DOTALL)

# Command separators, control characters (\r and \n act as Enter) and
# shell expansions, which the lexical check below cannot see through
_SHELL_OPERATORS = re.compile(r"[;&|`$\x00-\x1f\x7f]")


def is_cd_command(command: str) -> bool:
    return CD_COMMAND.match(command.strip()) is not None


def _strip_quotes(argument: str) -> str:
    if len(argument) >= 2 and argument[0] == argument[-1] and argument[0] in "\"'":
        return argument[1:-1]
    return argument


def validate_navigation(
    root: str | None,
    command: str,
    current_directory: str | None = None,
) -> NavigationDecision:
    """Check that a ``cd`` command stays inside ``root``.

    Args:
        root: The target's configured working directory.
        command: The full command text, e.g. ``cd plugins``.
        current_directory: Where the session currently is, if the caller
            knows. Without it relative paths are resolved against ``root``.

    Returns:
        A NavigationDecision; every outcome, including a missing root,
        is an ordinary allow or deny with a reason.
    """
    if not root:
        return NavigationDecision(
            allowed=False, reason="Terminal has no configured root directory"
        )

    match = CD_COMMAND.match(command.strip())
    if match is None:
        return NavigationDecision(allowed=False, reason="Not a cd command")

    argument = _strip_quotes(match.group(1).strip())

    if argument.startswith("~"):
        return NavigationDecision(
            allowed=False, reason="Navigation to the home directory is not allowed"
        )
    if argument == "-":
        return NavigationDecision(
            allowed=False, reason="Navigation to the previous directory is not allowed"
        )
    if _SHELL_OPERATORS.search(argument):
        return NavigationDecision(
            allowed=False, reason="cd may not be combined with other commands or shell expansions"
        )

    base = posixpath.join(root, current_directory) if current_directory else root
    if posixpath.isabs(argument):
        resolved = argument
    else:
        resolved = posixpath.join(base, argument)

    root_norm = posixpath.normpath(root)
    target_norm = posixpath.normpath(resolved)

    relative = posixpath.relpath(target_norm, root_norm)
    if posixpath.isabs(relative) or relative == ".." or relative.startswith("../"):
        return NavigationDecision(
            allowed=False,
            reason=f"Cannot navigate outside working directory ({root_norm})",
        )

    if (
        posixpath.normpath(argument) == ".."
        and target_norm == root_norm
        and current_directory is not None
        and posixpath.normpath(base) == root_norm
    ):
        return NavigationDecision(
            allowed=False, reason="Already at the working directory root"
        )

    return NavigationDecision(allowed=True, reason=f"Navigation within {root_norm}")
