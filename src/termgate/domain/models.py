"""Core domain models for the termgate system.

These models represent the data flowing through the broker: terminal
targets and the security policy (both persisted as camelCase JSON), the
caller identity handed over by the identity provider, audit events, and
the decision records produced by the policy layer.
"""

from __future__ import annotations

import enum
import re
from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

TARGET_ID_PATTERN = re.compile(r"^[a-z0-9-]+$")


class _CamelModel(BaseModel):
    """Base for models persisted with camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Terminal targets
# ---------------------------------------------------------------------------


class LifecycleCommands(_CamelModel):
    """Service control commands for the process running inside a target."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    start: str | None = None
    stop: str | None = None
    restart: str | None = None


class SessionTarget(_CamelModel):
    """A named command-execution destination backed by one tmux session."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str = Field(description="Stable identifier, lowercase letters, digits and dashes")
    display_name: str = Field(default="", alias="name")
    description: str = Field(default="")
    session_label: str | None = Field(
        default=None, alias="sessionName", description="tmux session name; defaults to id"
    )
    working_directory: str | None = Field(default=None)
    startup_command: str | None = Field(default=None, alias="initialCommand")
    icon: str | None = Field(default=None)
    lifecycle_commands: LifecycleCommands = Field(
        default_factory=LifecycleCommands, alias="commands"
    )
    has_version_control: bool = Field(default=False, alias="hasGit")

    @field_validator("id")
    @classmethod
    def _check_id(cls, value: str) -> str:
        if not TARGET_ID_PATTERN.match(value):
            raise ValueError("target id must match [a-z0-9-]+")
        return value

    @property
    def label(self) -> str:
        """The tmux session name for this target."""
        return self.session_label or self.id


# ---------------------------------------------------------------------------
# Security policy
# ---------------------------------------------------------------------------


class NetworkAllowlist(_CamelModel):
    enabled: bool = False
    ips: list[str] = Field(default_factory=lambda: ["127.0.0.1", "::1"], alias="allowedIPs")
    cidr_ranges: list[str] = Field(
        default_factory=lambda: ["192.168.0.0/16", "10.0.0.0/8"], alias="allowedRanges"
    )


class TargetPolicy(_CamelModel):
    """Per-target restrictions.

    ``None`` means "not configured". A configured but empty IP or command
    allow-list admits nothing; an empty identity list is unrestricted.
    """

    allowed_ips: list[str] | None = Field(default=None, alias="allowedIPs")
    allowed_command_patterns: list[str] | None = Field(default=None, alias="allowedCommands")
    denied_command_patterns: list[str] | None = Field(default=None, alias="deniedCommands")
    approval_required_patterns: list[str] | None = Field(
        default=None, alias="requiresApproval"
    )
    max_requests_per_window: int | None = Field(
        default=None, gt=0, alias="maxCommandsPerMinute"
    )
    allowed_identities: list[str] | None = Field(default=None, alias="allowedUsers")


class CommandFiltering(_CamelModel):
    enabled: bool = True
    global_denied_command_patterns: list[str] = Field(
        default_factory=list, alias="globalDeniedCommands"
    )
    global_denied_regexes: list[str] = Field(default_factory=list, alias="globalDeniedPatterns")

    @field_validator("global_denied_regexes")
    @classmethod
    def _check_regexes(cls, value: list[str]) -> list[str]:
        for pattern in value:
            try:
                re.compile(pattern)
            except re.error as e:
                raise ValueError(f"invalid denied pattern {pattern!r}: {e}") from e
        return value


class RateLimiting(_CamelModel):
    enabled: bool = True
    global_limit: int | None = Field(
        default=None, gt=0, description="Total requests per window for one terminal, all users"
    )
    per_identity_limit: int = Field(default=10, gt=0, alias="perUserLimit")
    window_ms: int = Field(default=60_000, gt=0)


class SecurityLogging(_CamelModel):
    """Which decisions are written to the audit trail.

    ``log_path`` is carried for round-tripping policy files; the trail
    itself is written where ``storage.audit_log_path`` points.
    """

    enabled: bool = True
    log_all_commands: bool = True
    log_failed_attempts: bool = True
    log_path: str = Field(default="./logs/security.log")

    def records(self, event_type: AuditEventType) -> bool:
        if not self.enabled:
            return False
        if event_type is AuditEventType.ALLOWED_COMMAND:
            return self.log_all_commands
        if event_type is AuditEventType.APPROVAL_REQUIRED:
            return True
        return self.log_failed_attempts


class PolicyConfig(_CamelModel):
    """The complete security policy snapshot.

    Loaded once at startup and replaced as a whole by the admin API.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    network_allowlist: NetworkAllowlist = Field(
        default_factory=NetworkAllowlist, alias="ipWhitelist"
    )
    per_target: dict[str, TargetPolicy] = Field(
        default_factory=dict, alias="terminalRestrictions"
    )
    command_filtering: CommandFiltering = Field(default_factory=CommandFiltering)
    rate_limiting: RateLimiting = Field(default_factory=RateLimiting)
    audit_logging: SecurityLogging = Field(default_factory=SecurityLogging, alias="logging")

    def for_target(self, target_id: str) -> TargetPolicy | None:
        return self.per_target.get(target_id)


def default_policy() -> PolicyConfig:
    """Policy written on first start when no policy file exists."""
    return PolicyConfig(
        command_filtering=CommandFiltering(
            enabled=True,
            global_denied_command_patterns=[
                "rm -rf *",
                "rm -rf /*",
                "mkfs *",
                "dd if=*",
                ":(){ :|:& };:",
                "chmod -R 777 /",
                "wget * | sh",
                "curl * | bash",
            ],
            global_denied_regexes=[
                r".*\bsudo\s+rm\b.*",
                r".*\bsudo\s+dd\b.*",
                r".*>/dev/sd[a-z].*",
            ],
        ),
        rate_limiting=RateLimiting(enabled=True, global_limit=20, per_identity_limit=10),
    )


# ---------------------------------------------------------------------------
# Identity
# ---------------------------------------------------------------------------


class Identity(BaseModel):
    """A verified caller, as supplied by the identity provider."""

    model_config = ConfigDict(frozen=True)

    username: str
    role: str = "user"
    authorized_target_ids: tuple[str, ...] = ()

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    def may_access(self, target_id: str) -> bool:
        return self.is_admin or target_id in self.authorized_target_ids


# ---------------------------------------------------------------------------
# Audit
# ---------------------------------------------------------------------------


class AuditEventType(str, enum.Enum):
    ALLOWED_COMMAND = "ALLOWED_COMMAND"
    DENIED_COMMAND = "DENIED_COMMAND"
    APPROVAL_REQUIRED = "APPROVAL_REQUIRED"
    IP_DENIED = "IP_DENIED"
    USER_DENIED = "USER_DENIED"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"


class AuditEvent(_CamelModel):
    """A single security decision record. Never mutated once written."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    event_type: AuditEventType
    target_id: str = Field(alias="terminalId")
    identity: str = Field(alias="username")
    command: str | None = None
    reason: str | None = None
    source_ip: str | None = Field(default=None, alias="clientIP")
    limit: int | None = None


class AuditFilter(_CamelModel):
    """Query filters for reading back the audit trail."""

    target_id: str | None = Field(default=None, alias="terminalId")
    identity: str | None = Field(default=None, alias="username")
    event_type: AuditEventType | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None

    def matches(self, event: AuditEvent) -> bool:
        if self.target_id is not None and event.target_id != self.target_id:
            return False
        if self.identity is not None and event.identity != self.identity:
            return False
        if self.event_type is not None and event.event_type != self.event_type:
            return False
        if self.start_date is not None and event.timestamp < _aware(self.start_date):
            return False
        if self.end_date is not None and event.timestamp > _aware(self.end_date):
            return False
        return True


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Decisions
# ---------------------------------------------------------------------------


class NavigationDecision(BaseModel):
    model_config = ConfigDict(frozen=True)

    allowed: bool
    reason: str


class RateDecision(BaseModel):
    model_config = ConfigDict(frozen=True)

    allowed: bool
    retry_after_seconds: int | None = None
    reason: str | None = None
    limit: int | None = None


class CommandDecision(BaseModel):
    model_config = ConfigDict(frozen=True)

    allowed: bool
    requires_approval: bool = False
    reason: str | None = None


class AccessDecision(BaseModel):
    """Outcome of the composed access check.

    A denial is an ordinary outcome, not an error. ``requires_approval``
    marks a command that should be routed to a human sign-off flow.
    """

    model_config = ConfigDict(frozen=True)

    allowed: bool
    reasons: list[str] = Field(default_factory=list)
    requires_approval: bool = False
    retry_after_seconds: int | None = None

    @classmethod
    def permit(cls) -> AccessDecision:
        return cls(allowed=True)

    @classmethod
    def deny(cls, reason: str, **kwargs: object) -> AccessDecision:
        return cls(allowed=False, reasons=[reason], **kwargs)
