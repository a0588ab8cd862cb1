"""Caller identity for the HTTP transport.

termgate does not issue or verify credentials. It runs behind an
authenticating reverse proxy and trusts the identity headers that proxy
sets on every request.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

from fastapi import HTTPException, Request
from starlette.requests import HTTPConnection

from termgate.config.settings import IdentityConfig
from termgate.domain.models import Identity

logger = logging.getLogger(__name__)


class IdentityProvider(ABC):
    """Turns an incoming connection into a verified Identity."""

    @abstractmethod
    def resolve(self, connection: HTTPConnection) -> Identity | None:
        """Return the caller's identity, or None if unauthenticated."""
        ...

    def __call__(self, request: Request) -> Identity:
        identity = self.resolve(request)
        if identity is None:
            raise HTTPException(status_code=401, detail="Authentication required")
        return identity


class HeaderIdentityProvider(IdentityProvider):
    """Reads ``user``, ``role`` and assigned terminals from proxy headers.

    The terminals header is a comma-separated list of target ids. The
    configured admin role is mapped to the ``admin`` role.
    """

    def __init__(self, config: IdentityConfig | None = None) -> None:
        self._config = config or IdentityConfig()

    def resolve(self, connection: HTTPConnection) -> Identity | None:
        headers = connection.headers
        username = headers.get(self._config.user_header, "").strip()
        if not username:
            return None
        role = headers.get(self._config.role_header, "user").strip() or "user"
        if role == self._config.admin_role:
            role = "admin"
        terminals = headers.get(self._config.targets_header, "")
        target_ids = tuple(t.strip() for t in terminals.split(",") if t.strip())
        return Identity(username=username, role=role, authorized_target_ids=target_ids)
