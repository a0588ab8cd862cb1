"""File-backed storage for terminal targets and the security policy.

Both documents are JSON, read whole and written whole. Writes go to a
temporary file in the same directory and are moved into place with
``os.replace``, so a failed write leaves the previous version readable.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
from pathlib import Path

from pydantic import TypeAdapter, ValidationError

from termgate.domain.models import PolicyConfig, SessionTarget, default_policy

logger = logging.getLogger(__name__)

_TARGETS = TypeAdapter(list[SessionTarget])


class ConfigurationError(Exception):
    """Raised when stored or submitted configuration is malformed."""


class PersistenceError(Exception):
    """Raised when configuration cannot be written."""


def parse_targets(data: object) -> list[SessionTarget]:
    """Validate a raw target collection (as decoded from JSON)."""
    try:
        targets = _TARGETS.validate_python(data)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid terminals configuration: {e}") from e
    seen: set[str] = set()
    for target in targets:
        if target.id in seen:
            raise ConfigurationError(f"Duplicate terminal id: {target.id}")
        seen.add(target.id)
    return targets


def parse_policy(data: object) -> PolicyConfig:
    """Validate a raw policy document (as decoded from JSON)."""
    try:
        return PolicyConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid security configuration: {e}") from e


class ConfigStore:
    """Loads and replaces the targets and policy documents."""

    def __init__(self, targets_path: Path | str, policy_path: Path | str) -> None:
        self._targets_path = Path(targets_path)
        self._policy_path = Path(policy_path)

    async def load_targets(self) -> list[SessionTarget]:
        data = await self._read(self._targets_path)
        if data is None:
            logger.warning("Terminals file %s not found, none configured", self._targets_path)
            return []
        return parse_targets(data)

    async def load_policy(self) -> PolicyConfig:
        data = await self._read(self._policy_path)
        if data is None:
            logger.warning("Security file %s not found, writing defaults", self._policy_path)
            policy = default_policy()
            try:
                await self.save_policy(policy)
            except PersistenceError as e:
                logger.error("Using unsaved default policy: %s", e)
            return policy
        return parse_policy(data)

    async def save_targets(self, targets: list[SessionTarget]) -> None:
        payload = [
            target.model_dump(mode="json", by_alias=True, exclude_none=True)
            for target in targets
        ]
        await self._write(self._targets_path, payload)

    async def save_policy(self, policy: PolicyConfig) -> None:
        await self._write(
            self._policy_path, policy.model_dump(mode="json", by_alias=True, exclude_none=True)
        )

    async def _read(self, path: Path) -> object | None:
        loop = asyncio.get_running_loop()
        try:
            text = await loop.run_in_executor(None, path.read_text, "utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            raise ConfigurationError(f"Cannot read {path}: {e}") from e
        try:
            return json.loads(text)
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"{path} is not valid JSON: {e}") from e

    async def _write(self, path: Path, payload: object) -> None:
        text = json.dumps(payload, indent=2) + "\n"
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, _atomic_write, path, text)
        except OSError as e:
            raise PersistenceError(f"Cannot write {path}: {e}") from e
        logger.info("Saved %s", path)


def _atomic_write(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise
