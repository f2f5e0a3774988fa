from abc import ABC, abstractmethod

import httpx

from app.core.errors import CircuitOpenError, IdentityProviderError
from app.core.logging import DOMAIN_IDENTITY, get_domain_logger
from app.core.resilience import get_breaker, retry_with_backoff
from app.core.settings import settings
from app.schemas.identity import ProviderOrganization, ProviderUser

logger = get_domain_logger(__name__, DOMAIN_IDENTITY)


class IdentityProvider(ABC):
    provider_name: str

    @abstractmethod
    async def get_organization(self, organization_id: str) -> ProviderOrganization:
        raise NotImplementedError

    @abstractmethod
    async def get_user(self, user_id: str) -> ProviderUser:
        raise NotImplementedError


class WorkOSIdentityProvider(IdentityProvider):
    provider_name = "workos"

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        timeout_seconds: float | None = None,
        max_retries: int | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_key = api_key if api_key is not None else settings.workos_api_key
        self.base_url = (base_url or settings.workos_api_base_url).rstrip("/")
        self.timeout_seconds = float(
            timeout_seconds if timeout_seconds is not None else settings.identity_provider_timeout_seconds
        )
        self.max_retries = int(max_retries if max_retries is not None else settings.identity_provider_max_retries)
        self._transport = transport

    async def _get_json(self, path: str, resource: str) -> dict:
        if not self.api_key:
            raise IdentityProviderError(f"Cannot fetch {resource}: identity provider API key is not configured")

        breaker = get_breaker(f"identity:{self.provider_name}:{resource}")
        if not breaker.can_execute():
            raise CircuitOpenError(f"Identity provider circuit open for {resource}")

        async def _call() -> dict:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout_seconds,
                transport=self._transport,
            ) as client:
                response = await client.get(path, headers={"Authorization": f"Bearer {self.api_key}"})
                response.raise_for_status()
                return response.json()

        try:
            payload = await retry_with_backoff(
                _call, max_retries=self.max_retries, label=f"{self.provider_name}:{resource}"
            )
        except httpx.HTTPStatusError as exc:
            # 4xx other than 429 is a bad id from a healthy provider.
            if exc.response.status_code >= 500 or exc.response.status_code == 429:
                breaker.record_failure()
            else:
                breaker.record_success()
            raise IdentityProviderError(
                f"Identity provider returned {exc.response.status_code} for {resource} {path}"
            ) from exc
        except (httpx.HTTPError, TimeoutError, ConnectionError) as exc:
            breaker.record_failure()
            raise IdentityProviderError(f"Identity provider request failed for {resource} {path}: {exc}") from exc
        except ValueError as exc:
            breaker.record_failure()
            raise IdentityProviderError(f"Identity provider sent an unreadable body for {resource} {path}") from exc
        breaker.record_success()
        return payload

    async def get_organization(self, organization_id: str) -> ProviderOrganization:
        logger.info("Fetching organization from identity provider | organization_id=%s", organization_id)
        payload = await self._get_json(f"/organizations/{organization_id}", "organization")
        return ProviderOrganization.model_validate(payload)

    async def get_user(self, user_id: str) -> ProviderUser:
        logger.info("Fetching user from identity provider | user_id=%s", user_id)
        payload = await self._get_json(f"/user_management/users/{user_id}", "user")
        return ProviderUser.model_validate(payload)


_provider: IdentityProvider | None = None


def get_identity_provider() -> IdentityProvider:
    global _provider
    if _provider is None:
        _provider = WorkOSIdentityProvider()
    return _provider
