"""
Health checks against the Antigravity proxy.

Every call has a bounded timeout and collapses network failures to
False or None; nothing here raises for an unreachable proxy. Retry
policy lives in the process supervisor.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

logger = logging.getLogger(__name__)


class ProxyModel(BaseModel):
    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)


class HealthInfo(ProxyModel):
    version: Optional[str] = None
    strategy: Optional[str] = None


class AccountLimit(ProxyModel):
    email: Optional[str] = None
    id: Optional[str] = None
    status: Optional[str] = None

    @property
    def name(self) -> str:
        return self.email or self.id or "unknown"


class ModelInfo(ProxyModel):
    id: str


class ModelList(ProxyModel):
    data: list[ModelInfo] = Field(default_factory=list)


@dataclass
class HealthSnapshot:
    """Proxy health plus, when available, per-account status."""

    health: HealthInfo
    limits: list[AccountLimit] | None = None


@asynccontextmanager
async def _client(client: httpx.AsyncClient | None) -> AsyncIterator[httpx.AsyncClient]:
    if client is not None:
        yield client
        return
    async with httpx.AsyncClient() as owned:
        yield owned


async def probe_health(
    base_url: str, timeout: float = 2.0, client: httpx.AsyncClient | None = None
) -> bool:
    """Return True only if GET /health answers with a 2xx within the timeout."""
    try:
        async with _client(client) as http:
            response = await http.get(f"{base_url}/health", timeout=timeout)
            return response.is_success
    except httpx.HTTPError as e:
        logger.debug(f"Health probe against {base_url} failed: {e!r}")
        return False
    except Exception as e:
        logger.debug(f"Health probe against {base_url} errored: {e!r}")
        return False


async def find_running_proxy(
    ports: list[int],
    host: str = "127.0.0.1",
    timeout: float = 2.0,
    client: httpx.AsyncClient | None = None,
) -> str | None:
    """Probe candidate ports concurrently; return the first healthy base URL in port order."""
    urls = [f"http://{host}:{port}" for port in ports]
    results = await asyncio.gather(*(probe_health(url, timeout, client) for url in urls))
    for url, healthy in zip(urls, results):
        if healthy:
            return url
    return None


async def _get_json(http: httpx.AsyncClient, url: str, timeout: float):
    response = await http.get(url, timeout=timeout)
    response.raise_for_status()
    return response.json()


def _parse_limits(payload) -> list[AccountLimit] | None:
    items = payload if isinstance(payload, list) else [payload]
    try:
        return [AccountLimit.model_validate(item) for item in items]
    except ValidationError as e:
        logger.warning(f"Unexpected /account-limits payload: {e}")
        return None


async def fetch_status(
    base_url: str, timeout: float = 3.0, client: httpx.AsyncClient | None = None
) -> HealthSnapshot | None:
    """
    Fetch /health and /account-limits concurrently.

    /health is required: if it fails the whole call returns None. A failing
    /account-limits only leaves ``limits`` unset.
    """
    try:
        async with _client(client) as http:
            health_result, limits_result = await asyncio.gather(
                _get_json(http, f"{base_url}/health", timeout),
                _get_json(http, f"{base_url}/account-limits", timeout),
                return_exceptions=True,
            )
    except Exception as e:
        logger.debug(f"Status fetch against {base_url} failed: {e!r}")
        return None

    if isinstance(health_result, BaseException):
        logger.debug(f"/health failed: {health_result!r}")
        return None

    try:
        health = HealthInfo.model_validate(health_result)
    except ValidationError as e:
        logger.warning(f"Unexpected /health payload: {e}")
        return None

    limits = None
    if isinstance(limits_result, BaseException):
        logger.debug(f"/account-limits failed: {limits_result!r}")
    else:
        limits = _parse_limits(limits_result)

    return HealthSnapshot(health=health, limits=limits)


async def fetch_models(
    base_url: str, timeout: float = 3.0, client: httpx.AsyncClient | None = None
) -> ModelList | None:
    """Fetch /v1/models. Non-2xx responses and unusable payloads give None with a warning."""
    try:
        async with _client(client) as http:
            response = await http.get(f"{base_url}/v1/models", timeout=timeout)
    except httpx.HTTPError as e:
        logger.warning(f"Could not reach {base_url}/v1/models: {e!r}")
        return None

    if not response.is_success:
        logger.warning(f"/v1/models returned HTTP {response.status_code}")
        return None

    try:
        return ModelList.model_validate(response.json())
    except (ValueError, ValidationError) as e:
        logger.warning(f"Unexpected /v1/models payload: {e}")
        return None
