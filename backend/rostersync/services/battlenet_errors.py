from __future__ import annotations

from typing import TYPE_CHECKING, Optional, Sequence

if TYPE_CHECKING:  # pragma: no cover
    from rostersync.services.payload_validation import FieldFailure


class BattleNetError(Exception):
    """Base class for every failure raised by the Battle.net access layer."""


class BattleNetConfigError(BattleNetError):
    """Client id or secret is not configured."""


class BattleNetAuthError(BattleNetError):
    """The token endpoint refused us or returned an unusable token."""


class BattleNetApiError(BattleNetError):
    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        operation: Optional[str] = None,
        resource_type: Optional[str] = None,
        resource_id: Optional[str] = None,
        region: Optional[str] = None,
        job_id: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.operation = operation
        self.resource_type = resource_type
        self.resource_id = resource_id
        self.region = region
        self.job_id = job_id

    def __str__(self) -> str:
        base = super().__str__()
        context = ", ".join(
            f"{key}={value}"
            for key, value in (
                ("status", self.status_code),
                ("operation", self.operation),
                ("resource", self.resource_type),
                ("id", self.resource_id),
                ("region", self.region),
                ("job", self.job_id),
            )
            if value is not None
        )
        return f"{base} ({context})" if context else base


class BattleNetNotFoundError(BattleNetApiError):
    """The remote resource does not exist (HTTP 404)."""


class BattleNetRateLimitError(BattleNetApiError):
    """Still rate limited (HTTP 429) after the last allowed attempt."""


class BattleNetValidationError(BattleNetApiError):
    """The payload is missing fields the sync cannot work without."""

    def __init__(self, message: str, *, failures: Sequence["FieldFailure"] = (), **kwargs) -> None:
        super().__init__(message, **kwargs)
        self.failures = list(failures)


class GuildMemberSyncError(Exception):
    """Persisting a roster diff failed and the transaction was rolled back."""

    def __init__(self, guild_id: int, message: str) -> None:
        super().__init__(message)
        self.guild_id = guild_id
