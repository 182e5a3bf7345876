"""
Proxy control plane.

Thin async client for the Toxiproxy HTTP API plus the proxy-set helpers the
engine relies on (setup and forced cleanup). Scenarios only depend on the
``ProxyHandle`` interface, so tests can substitute in-memory proxies.

Example:
    >>> async with ToxiproxyClient("http://localhost:8474") as client:
    ...     proxies = await setup_proxies(client, ToxiproxyConfig.default())
    ...     toxic = await proxies[0].add_toxic("", "latency", "downstream", 1.0,
    ...                                        {"latency": 200, "jitter": 0})
    ...     await proxies[0].remove_toxic(toxic.name)
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import aiohttp

from .config import ToxiproxyConfig
from .errors import ProxyError

logger = logging.getLogger(__name__)

DOWNSTREAM = "downstream"


@dataclass
class Toxic:
    """A fault installed on a proxy."""
    name: str
    type: str
    stream: str = DOWNSTREAM
    toxicity: float = 1.0
    attributes: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Toxic":
        return cls(
            name=data.get("name", ""),
            type=data.get("type", ""),
            stream=data.get("stream", DOWNSTREAM),
            toxicity=float(data.get("toxicity", 1.0)),
            attributes=dict(data.get("attributes") or {}),
        )

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "type": self.type,
            "stream": self.stream,
            "toxicity": self.toxicity,
            "attributes": self.attributes,
        }
        if self.name:
            data["name"] = self.name
        return data


class ProxyHandle(ABC):
    """A proxy in front of a single backing node."""

    name: str

    @abstractmethod
    async def enable(self) -> None:
        """Let traffic through."""

    @abstractmethod
    async def disable(self) -> None:
        """Drop all traffic and close connections."""

    @abstractmethod
    async def add_toxic(
        self,
        name: str,
        toxic_type: str,
        stream: str,
        toxicity: float,
        attributes: Dict[str, Any],
    ) -> Toxic:
        """Install a toxic. An empty name lets the server pick one."""

    @abstractmethod
    async def remove_toxic(self, name: str) -> None:
        """Remove a toxic by name."""

    @abstractmethod
    async def toxics(self) -> List[Toxic]:
        """List the toxics currently installed."""


class Proxy(ProxyHandle):
    """Toxiproxy proxy backed by the HTTP API."""

    def __init__(
        self,
        client: "ToxiproxyClient",
        name: str,
        listen: str = "",
        upstream: str = "",
        enabled: bool = True,
    ):
        self._client = client
        self.name = name
        self.listen = listen
        self.upstream = upstream
        self.enabled = enabled

    def __repr__(self) -> str:
        return f"Proxy({self.name!r}, {self.listen!r} -> {self.upstream!r}, enabled={self.enabled})"

    async def enable(self) -> None:
        await self._set_enabled(True)

    async def disable(self) -> None:
        await self._set_enabled(False)

    async def _set_enabled(self, enabled: bool) -> None:
        operation = "enable proxy" if enabled else "disable proxy"
        data = await self._client.request(
            "POST", f"/proxies/{self.name}", proxy=self.name,
            operation=operation, payload={"enabled": enabled},
        )
        self.enabled = bool(data.get("enabled", enabled)) if data else enabled

    async def add_toxic(
        self,
        name: str,
        toxic_type: str,
        stream: str,
        toxicity: float,
        attributes: Dict[str, Any],
    ) -> Toxic:
        toxic = Toxic(name=name, type=toxic_type, stream=stream,
                      toxicity=toxicity, attributes=dict(attributes))
        data = await self._client.request(
            "POST", f"/proxies/{self.name}/toxics", proxy=self.name,
            operation=f"add {toxic_type} toxic", payload=toxic.to_dict(),
        )
        return Toxic.from_dict(data) if data else toxic

    async def remove_toxic(self, name: str) -> None:
        await self._client.request(
            "DELETE", f"/proxies/{self.name}/toxics/{name}", proxy=self.name,
            operation=f"remove toxic {name}",
        )

    async def toxics(self) -> List[Toxic]:
        data = await self._client.request(
            "GET", f"/proxies/{self.name}/toxics", proxy=self.name,
            operation="list toxics",
        )
        return [Toxic.from_dict(item) for item in data or []]

    async def delete(self) -> None:
        await self._client.request(
            "DELETE", f"/proxies/{self.name}", proxy=self.name,
            operation="delete proxy",
        )


class ToxiproxyClient:
    """
    Async client for the Toxiproxy REST API.

    Use as an async context manager, or call ``close()`` when done.
    """

    def __init__(
        self,
        api_url: str = "http://localhost:8474",
        timeout: float = 10.0,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self._session = session
        self._owns_session = session is None

    async def __aenter__(self) -> "ToxiproxyClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    @property
    def session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            )
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()

    async def request(
        self,
        method: str,
        path: str,
        proxy: str = "toxiproxy",
        operation: str = "call API",
        payload: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """Issue an API call, raising ``ProxyError`` on any failure."""
        url = f"{self.api_url}{path}"
        try:
            async with self.session.request(method, url, json=payload) as response:
                if response.status >= 400:
                    body = (await response.text()).strip()
                    raise ProxyError(proxy, operation, f"HTTP {response.status}: {body}")
                if response.status == 204 or response.content_length == 0:
                    return None
                return await response.json(content_type=None)
        except aiohttp.ClientError as e:
            raise ProxyError(proxy, operation, str(e)) from e
        except asyncio.TimeoutError as e:
            raise ProxyError(proxy, operation, "request timed out") from e

    async def proxies(self) -> Dict[str, Proxy]:
        data = await self.request("GET", "/proxies", operation="list proxies")
        return {
            name: Proxy(self, name, item.get("listen", ""), item.get("upstream", ""),
                        bool(item.get("enabled", True)))
            for name, item in (data or {}).items()
        }

    async def create_proxy(self, name: str, listen: str, upstream: str) -> Proxy:
        item = await self.request(
            "POST", "/proxies", proxy=name, operation="create proxy",
            payload={"name": name, "listen": listen, "upstream": upstream, "enabled": True},
        )
        item = item or {}
        return Proxy(self, name, item.get("listen", listen),
                     item.get("upstream", upstream), bool(item.get("enabled", True)))


# =============================================================================
# Proxy-set helpers
# =============================================================================

@dataclass
class CleanupResult:
    """
    Outcome of a best-effort proxy cleanup.

    Cleanup never raises; callers inspect ``errors`` and decide whether to
    log them. Discarding the result is a deliberate choice at the call site.
    """
    toxics_removed: int = 0
    errors: List[ProxyError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

    def log_warnings(self, prefix: str) -> None:
        for error in self.errors:
            logger.warning(f"{prefix} Warning: cleanup failed: {error}")


async def cleanup_proxies(proxies: Sequence[ProxyHandle]) -> CleanupResult:
    """Remove every toxic and re-enable every proxy."""
    result = CleanupResult()
    for proxy in proxies:
        try:
            toxics = await proxy.toxics()
        except ProxyError as e:
            result.errors.append(e)
            toxics = []

        for toxic in toxics:
            try:
                await proxy.remove_toxic(toxic.name)
                result.toxics_removed += 1
            except ProxyError as e:
                result.errors.append(e)

        try:
            await proxy.enable()
        except ProxyError as e:
            result.errors.append(e)

    if result.toxics_removed:
        logger.debug(f"Cleanup removed {result.toxics_removed} toxic(s)")
    return result


async def wait_for_api(client: ToxiproxyClient, timeout: float = 30.0,
                       interval: float = 0.5) -> Dict[str, Proxy]:
    """Poll until the API answers; returns the existing proxies."""
    deadline = time.monotonic() + timeout
    while True:
        try:
            return await client.proxies()
        except ProxyError as e:
            if time.monotonic() >= deadline:
                raise ProxyError("toxiproxy", "reach API",
                                 f"timeout waiting for toxiproxy to be ready ({e.detail})") from e
        await asyncio.sleep(interval)


async def setup_proxies(client: ToxiproxyClient, config: ToxiproxyConfig,
                        ready_timeout: float = 30.0) -> List[Proxy]:
    """Recreate the configured proxies from scratch and enable them."""
    existing = await wait_for_api(client, timeout=ready_timeout)
    for proxy in existing.values():
        try:
            await proxy.delete()
        except ProxyError as e:
            logger.warning(f"[Setup] Could not delete stale proxy {proxy.name}: {e}")

    proxies: List[Proxy] = []
    for proxy_config in config.proxies:
        proxy = await client.create_proxy(proxy_config.name, proxy_config.listen,
                                          proxy_config.upstream)
        proxies.append(proxy)
        logger.info(f"[Setup] Created proxy: {proxy.name} ({proxy.listen} -> {proxy.upstream})")

    for proxy in proxies:
        await proxy.enable()

    return proxies
