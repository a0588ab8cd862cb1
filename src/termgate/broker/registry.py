"""Cached view of the configured terminal targets."""

from __future__ import annotations

import logging

from termgate.domain.models import SessionTarget
from termgate.store.config_store import ConfigStore, ConfigurationError

logger = logging.getLogger(__name__)


class TargetNotFoundError(LookupError):
    """Raised when a request names a target that is not configured."""

    def __init__(self, target_id: str) -> None:
        super().__init__(f"Terminal '{target_id}' not found in configuration")
        self.target_id = target_id


class TargetRegistry:
    """Read-through cache of SessionTargets keyed by id.

    The collection is replaced as a whole: the new set is persisted first
    and only then swapped in, so a failed write leaves the cache as it was.
    """

    def __init__(
        self,
        store: ConfigStore | None = None,
        targets: list[SessionTarget] | None = None,
    ) -> None:
        self._store = store
        self._targets: dict[str, SessionTarget] = {t.id: t for t in targets or ()}

    async def load(self) -> None:
        if self._store is None:
            return
        targets = await self._store.load_targets()
        self._targets = {t.id: t for t in targets}
        logger.info("Loaded %d terminals", len(self._targets))

    def all(self) -> list[SessionTarget]:
        return list(self._targets.values())

    def find(self, target_id: str) -> SessionTarget | None:
        return self._targets.get(target_id)

    def get(self, target_id: str) -> SessionTarget:
        target = self._targets.get(target_id)
        if target is None:
            raise TargetNotFoundError(target_id)
        return target

    def root_for(self, target_id: str) -> str | None:
        """The sandbox root for ``target_id``, if it has one."""
        target = self._targets.get(target_id)
        return target.working_directory if target else None

    async def replace(self, targets: list[SessionTarget]) -> None:
        ids = [t.id for t in targets]
        if len(ids) != len(set(ids)):
            raise ConfigurationError("Duplicate terminal ids in replacement set")
        if self._store is not None:
            await self._store.save_targets(targets)
        self._targets = {t.id: t for t in targets}
        logger.info("Terminals replaced (%d configured)", len(self._targets))
