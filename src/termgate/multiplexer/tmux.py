"""tmux-backed multiplexer.

Each operation runs one ``tmux`` invocation as a subprocess and waits
for it to exit.
"""

from __future__ import annotations

import asyncio
import logging

from termgate.multiplexer.base import Multiplexer, MultiplexerError, SessionGoneError

logger = logging.getLogger(__name__)

# stderr fragments tmux prints when the session (or the whole server) is gone
_GONE_MARKERS = ("can't find session", "session not found", "no server running")


class TmuxMultiplexer(Multiplexer):
    """Drives sessions through the tmux command-line client."""

    def __init__(self, binary: str = "tmux") -> None:
        self._binary = binary

    async def _run(self, *args: str, label: str = "") -> str:
        try:
            process = await asyncio.create_subprocess_exec(
                self._binary,
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise MultiplexerError(f"Cannot run {self._binary}: {e}", label=label) from e

        stdout, stderr = await process.communicate()
        if process.returncode != 0:
            message = stderr.decode("utf-8", errors="replace").strip()
            if any(marker in message for marker in _GONE_MARKERS):
                raise SessionGoneError(f"Session {label} not found: {message}", label=label)
            raise MultiplexerError(f"tmux command failed: {message}", label=label)
        return stdout.decode("utf-8", errors="replace")

    async def exists(self, label: str) -> bool:
        try:
            await self._run("has-session", "-t", f"={label}", label=label)
        except MultiplexerError:
            return False
        return True

    async def create(
        self,
        label: str,
        working_directory: str | None = None,
        startup_command: str | None = None,
    ) -> None:
        args = ["new-session", "-d", "-s", label]
        if working_directory:
            args.extend(["-c", working_directory])
        if startup_command:
            args.append(startup_command)
        try:
            await self._run(*args, label=label)
        except MultiplexerError as e:
            if "duplicate session" in str(e):
                logger.debug("Session %s already exists", label)
                return
            raise
        logger.info("Created tmux session: %s", label)

    async def send_keys(self, label: str, text: str, literal: bool = True) -> None:
        args = ["send-keys", "-t", f"={label}:"]
        if literal:
            args.append("-l")
        args.append(text)
        await self._run(*args, label=label)

    async def capture_output(self, label: str, line_count: int) -> str:
        return await self._run(
            "capture-pane", "-p", "-t", f"={label}:", "-S", f"-{line_count}", label=label
        )

    async def list_sessions(self) -> list[str]:
        try:
            output = await self._run("list-sessions", "-F", "#{session_name}")
        except MultiplexerError:
            # No server means no sessions
            return []
        return [line for line in output.splitlines() if line]

    async def kill(self, label: str) -> None:
        await self._run("kill-session", "-t", f"={label}", label=label)
        logger.info("Killed tmux session: %s", label)
