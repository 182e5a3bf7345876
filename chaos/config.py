"""
Proxy topology configuration.

The default topology is three proxies (one per memcache node). Set
``MEMCACHE_HOST`` to point the upstreams at a remote host; hostnames are
resolved to an IPv4 address because the proxy container may not be able to
resolve them itself::

    export MEMCACHE_HOST=misaki      # resolved to its IP
    export MEMCACHE_HOST=10.0.0.234  # used directly

``TOXIPROXY_URL`` overrides the control API address.
"""

import ipaddress
import logging
import os
import socket
from dataclasses import dataclass, field
from typing import List, Optional

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "http://localhost:8474"
DEFAULT_UPSTREAM_HOST = "memcache1"
DEFAULT_NODE_COUNT = 3
FIRST_LISTEN_PORT = 21211
FIRST_UPSTREAM_PORT = 11211


@dataclass
class ProxyConfig:
    """A single proxy definition."""
    name: str
    listen: str
    upstream: str


@dataclass
class ToxiproxyConfig:
    """Control API address and the proxies to create."""
    api_url: str = DEFAULT_API_URL
    proxies: List[ProxyConfig] = field(default_factory=list)

    @classmethod
    def default(cls, api_url: Optional[str] = None,
                upstream_host: Optional[str] = None,
                nodes: int = DEFAULT_NODE_COUNT) -> "ToxiproxyConfig":
        """Standard topology, honouring ``TOXIPROXY_URL`` and ``MEMCACHE_HOST``."""
        api_url = api_url or os.getenv("TOXIPROXY_URL", DEFAULT_API_URL)

        host = upstream_host or os.getenv("MEMCACHE_HOST", "")
        if host:
            resolved = resolve_host_to_ip(host)
            if resolved:
                logger.info(f"[Setup] Resolved {host} to {resolved} for toxiproxy upstreams")
                host = resolved
            else:
                logger.info(f"[Setup] Could not resolve {host}, using as-is")
        else:
            host = DEFAULT_UPSTREAM_HOST

        proxies = [
            ProxyConfig(
                name=f"memcache{i + 1}",
                listen=f"0.0.0.0:{FIRST_LISTEN_PORT + i}",
                upstream=f"{host}:{FIRST_UPSTREAM_PORT + i}",
            )
            for i in range(nodes)
        ]
        return cls(api_url=api_url, proxies=proxies)


def resolve_host_to_ip(hostname: str) -> str:
    """
    Resolve a hostname to an IPv4 address.

    Returns the input unchanged when it already is an IP address, the first
    IPv4 address (or first address of any family) when resolution works,
    and an empty string when it does not.
    """
    try:
        ipaddress.ip_address(hostname)
        return hostname
    except ValueError:
        pass

    try:
        infos = socket.getaddrinfo(hostname, None)
    except socket.gaierror:
        return ""

    addresses = [info[4][0] for info in infos]
    if not addresses:
        return ""
    for address in addresses:
        if ipaddress.ip_address(address).version == 4:
            return address
    return addresses[0]
