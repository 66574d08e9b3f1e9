"""Rate-limited Battle.net profile API client.

One instance per process. It owns the HTTP connection pool, the request limiter
and the client-credentials token, so nothing here is module-global.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional
from urllib.parse import quote, urlparse

import httpx

from rostersync.core.config import DEFAULT_REGION, REGION_HOSTS, settings
from rostersync.core.slugs import create_slug
from rostersync.services.battlenet_errors import (
    BattleNetApiError,
    BattleNetAuthError,
    BattleNetConfigError,
    BattleNetNotFoundError,
    BattleNetValidationError,
)
from rostersync.services.payload_validation import PayloadKind, validate_payload
from rostersync.services.rate_limiter import ReservoirLimiter, Sleeper
from rostersync.services.retry import schedule_with_retry

logger = logging.getLogger(__name__)

EMPTY_PROFESSIONS: dict[str, list] = {"primaries": [], "secondaries": []}
_ALLOWED_HREF_SUFFIXES = (".api.blizzard.com",)
_ALLOWED_HREF_HOSTS = frozenset({"gateway.battlenet.com.cn"})


def resolve_region(region: Optional[str]) -> str:
    normalized = (region or "").strip().lower()
    if normalized in REGION_HOSTS:
        return normalized
    logger.warning("Unknown Battle.net region %r; falling back to %s", region, DEFAULT_REGION)
    return DEFAULT_REGION


def _segment(value: str) -> str:
    return quote(value.lower(), safe="")


@dataclass
class ClientToken:
    access_token: str
    expires_at: float

    def is_fresh(self, now: float, margin: float) -> bool:
        return self.expires_at - now > margin


class BattleNetClient:
    def __init__(
        self,
        *,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        limiter: Optional[ReservoirLimiter] = None,
        token_region: Optional[str] = None,
        locale: Optional[str] = None,
        timeout: Optional[float] = None,
        max_attempts: Optional[int] = None,
        clock: Optional[Callable[[], float]] = None,
        sleep: Optional[Sleeper] = None,
    ) -> None:
        self.client_id = settings.BNET_CLIENT_ID if client_id is None else client_id
        self.client_secret = settings.BNET_CLIENT_SECRET if client_secret is None else client_secret
        self.token_region = resolve_region(token_region or settings.BNET_TOKEN_REGION)
        self.locale = locale or settings.BNET_LOCALE
        self.timeout = timeout if timeout is not None else settings.BNET_REQUEST_TIMEOUT_SECONDS
        self.max_attempts = max_attempts if max_attempts is not None else settings.BNET_MAX_ATTEMPTS
        self.limiter = limiter or ReservoirLimiter.from_settings()
        self._owns_http = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=self.timeout)
        self._clock = clock or time.time
        self._sleep = sleep
        self._token: Optional[ClientToken] = None
        self._token_lock = asyncio.Lock()

    async def __aenter__(self) -> "BattleNetClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    # Token management

    async def ensure_token(self) -> str:
        margin = settings.BNET_TOKEN_EXPIRY_MARGIN_SECONDS
        token = self._token
        if token is not None and token.is_fresh(self._clock(), margin):
            return token.access_token
        async with self._token_lock:
            # Another caller may have refreshed while we waited for the lock.
            token = self._token
            if token is not None and token.is_fresh(self._clock(), margin):
                return token.access_token
            self._token = await self._request_token()
            return self._token.access_token

    async def _request_token(self) -> ClientToken:
        if not self.client_id or not self.client_secret:
            raise BattleNetConfigError("BNET_CLIENT_ID and BNET_CLIENT_SECRET must be configured")
        token_url = f"{REGION_HOSTS[self.token_region]['auth_base_url']}/token"
        logger.info("Requesting Battle.net client token from %s", token_url)
        try:
            response = await self._http.post(
                token_url,
                data={"grant_type": "client_credentials"},
                auth=(self.client_id, self.client_secret),
                timeout=self.timeout,
            )
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPStatusError as exc:
            raise BattleNetAuthError(
                f"token request rejected with HTTP {exc.response.status_code}"
            ) from exc
        except httpx.RequestError as exc:
            raise BattleNetAuthError(f"token request failed: {exc}") from exc
        except ValueError as exc:
            raise BattleNetAuthError("token response was not JSON") from exc

        access_token = payload.get("access_token") if isinstance(payload, dict) else None
        expires_in = payload.get("expires_in") if isinstance(payload, dict) else None
        if not access_token or not isinstance(expires_in, (int, float)):
            raise BattleNetAuthError("token response is missing access_token or expires_in")
        return ClientToken(access_token=access_token, expires_at=self._clock() + expires_in)

    # Request plumbing

    async def _get(
        self,
        url: str,
        *,
        region: str,
        operation: str,
        resource_type: str,
        resource_id: str,
        params: Optional[dict[str, str]] = None,
    ) -> Any:
        query = params if params is not None else {"namespace": f"profile-{region}", "locale": self.locale}

        async def request() -> Any:
            token = await self.ensure_token()
            response = await self._http.get(
                url,
                params=query,
                headers={"Authorization": f"Bearer {token}"},
                timeout=self.timeout,
            )
            response.raise_for_status()
            try:
                return response.json()
            except ValueError as exc:
                raise BattleNetApiError(
                    "response body was not JSON",
                    status_code=response.status_code,
                    operation=operation,
                    resource_type=resource_type,
                    resource_id=resource_id,
                    region=region,
                ) from exc

        return await schedule_with_retry(
            self.limiter,
            request,
            operation=operation,
            resource_type=resource_type,
            resource_id=resource_id,
            region=region,
            max_attempts=self.max_attempts,
            sleep=self._sleep,
        )

    def _checked(self, kind: PayloadKind, data: Any, *, operation: str, resource_id: str, region: str) -> dict[str, Any]:
        result = validate_payload(kind, data)
        if not result.has_critical_fields:
            logger.error("%s %s is missing critical fields: %s", operation, resource_id, result.describe())
            raise BattleNetValidationError(
                f"{kind.value} payload is missing critical fields",
                failures=result.failures,
                operation=operation,
                resource_type=kind.value,
                resource_id=resource_id,
                region=region,
            )
        if not result.is_valid:
            logger.warning(
                "%s %s accepted with %d schema deviations: %s",
                operation,
                resource_id,
                len(result.failures),
                result.describe(),
            )
        return data

    def _api_base(self, region: str) -> str:
        return REGION_HOSTS[region]["api_base_url"]

    def _character_url(self, region: str, realm: str, name: str, suffix: str = "") -> str:
        return (
            f"{self._api_base(region)}/profile/wow/character/"
            f"{_segment(create_slug(realm))}/{_segment(name)}{suffix}"
        )

    def _guild_url(self, region: str, realm: str, guild_name: str, suffix: str = "") -> str:
        return (
            f"{self._api_base(region)}/data/wow/guild/"
            f"{_segment(create_slug(realm))}/{_segment(create_slug(guild_name))}{suffix}"
        )

    # Endpoints

    async def get_guild(self, realm: str, guild_name: str, region: str) -> dict[str, Any]:
        region = resolve_region(region)
        resource_id = f"{guild_name}@{realm}"
        data = await self._get(
            self._guild_url(region, realm, guild_name),
            region=region,
            operation="get_guild",
            resource_type="guild",
            resource_id=resource_id,
        )
        return self._checked(PayloadKind.guild, data, operation="get_guild", resource_id=resource_id, region=region)

    async def get_guild_roster(self, realm: str, guild_name: str, region: str) -> dict[str, Any]:
        region = resolve_region(region)
        resource_id = f"{guild_name}@{realm}"
        data = await self._get(
            self._guild_url(region, realm, guild_name, "/roster"),
            region=region,
            operation="get_guild_roster",
            resource_type="guild_roster",
            resource_id=resource_id,
        )
        return self._checked(
            PayloadKind.guild_roster, data, operation="get_guild_roster", resource_id=resource_id, region=region
        )

    async def get_character(self, realm: str, name: str, region: str) -> dict[str, Any]:
        region = resolve_region(region)
        resource_id = f"{name}@{realm}"
        data = await self._get(
            self._character_url(region, realm, name),
            region=region,
            operation="get_character",
            resource_type="character",
            resource_id=resource_id,
        )
        return self._checked(
            PayloadKind.character, data, operation="get_character", resource_id=resource_id, region=region
        )

    async def get_character_equipment(self, realm: str, name: str, region: str) -> dict[str, Any]:
        region = resolve_region(region)
        resource_id = f"{name}@{realm}"
        data = await self._get(
            self._character_url(region, realm, name, "/equipment"),
            region=region,
            operation="get_character_equipment",
            resource_type="character_equipment",
            resource_id=resource_id,
        )
        return self._checked(
            PayloadKind.character_equipment,
            data,
            operation="get_character_equipment",
            resource_id=resource_id,
            region=region,
        )

    async def get_mythic_keystone_profile(self, realm: str, name: str, region: str) -> Optional[dict[str, Any]]:
        """Returns None for characters that never ran a keystone (HTTP 404)."""
        region = resolve_region(region)
        resource_id = f"{name}@{realm}"
        try:
            data = await self._get(
                self._character_url(region, realm, name, "/mythic-keystone-profile"),
                region=region,
                operation="get_mythic_keystone_profile",
                resource_type="mythic_keystone",
                resource_id=resource_id,
            )
        except BattleNetNotFoundError:
            return None
        return self._checked(
            PayloadKind.mythic_keystone,
            data,
            operation="get_mythic_keystone_profile",
            resource_id=resource_id,
            region=region,
        )

    async def get_professions(self, realm: str, name: str, region: str) -> dict[str, Any]:
        """Returns empty primaries/secondaries for characters without professions (HTTP 404)."""
        region = resolve_region(region)
        resource_id = f"{name}@{realm}"
        try:
            data = await self._get(
                self._character_url(region, realm, name, "/professions"),
                region=region,
                operation="get_professions",
                resource_type="professions",
                resource_id=resource_id,
            )
        except BattleNetNotFoundError:
            return {key: [] for key in EMPTY_PROFESSIONS}
        return self._checked(
            PayloadKind.professions, data, operation="get_professions", resource_id=resource_id, region=region
        )

    async def get_collections_index(self, realm: str, name: str, region: str) -> dict[str, Any]:
        region = resolve_region(region)
        resource_id = f"{name}@{realm}"
        data = await self._get(
            self._character_url(region, realm, name, "/collections"),
            region=region,
            operation="get_collections_index",
            resource_type="collections",
            resource_id=resource_id,
        )
        return self._checked(
            PayloadKind.collections, data, operation="get_collections_index", resource_id=resource_id, region=region
        )

    async def get_href(self, href: str, region: str) -> Any:
        """Follow a ``href`` link from a previous payload. Only Battle.net API hosts are allowed."""
        region = resolve_region(region)
        parsed = urlparse(href)
        host = parsed.hostname or ""
        allowed_host = host in _ALLOWED_HREF_HOSTS or host.endswith(_ALLOWED_HREF_SUFFIXES)
        if parsed.scheme != "https" or not allowed_host:
            raise BattleNetApiError(
                "refusing to follow link outside the Battle.net API",
                operation="get_href",
                resource_type="href",
                resource_id=href,
                region=region,
            )
        return await self._get(
            href,
            region=region,
            operation="get_href",
            resource_type="href",
            resource_id=href,
            params={"locale": self.locale},
        )
