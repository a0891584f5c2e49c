# build_engine/edge/routing.py
"""
Viewer-request routing for the shared distribution.

This is the reference implementation of the edge function: the JavaScript
rendered by ``function_code`` must behave the same way. It makes no network
or storage calls; an unknown tenant simply maps to a path the origin will
404 on.
"""

import re
from dataclasses import dataclass, field, replace
from typing import Dict, FrozenSet, Iterable, Optional, Tuple

DEFAULT_RESERVED = frozenset({"www", "api", "admin", "cdn", "mail"})
PROVIDER_HOST_SUFFIX = ".cloudfront.net"
NOT_FOUND_URI = "/error/tenant-not-found.html"
INDEX_FILE = "index.html"

SUBDOMAIN_PATTERN = re.compile(r"^[a-z0-9]([a-z0-9-]*[a-z0-9])?$")
TENANT_PATH_PATTERN = re.compile(r"^/tenant-([a-zA-Z0-9-]+)(/.*)?$")


@dataclass(frozen=True)
class EdgeRequest:
    method: str
    uri: str
    headers: Dict[str, str] = field(default_factory=dict)

    @property
    def host(self) -> str:
        for name, value in self.headers.items():
            if name.lower() == "host":
                return value
        return ""


@dataclass(frozen=True)
class RoutingConfig:
    base_domain: str
    reserved_subdomains: FrozenSet[str] = DEFAULT_RESERVED

    @classmethod
    def build(cls, base_domain: str, reserved: Iterable[str] = DEFAULT_RESERVED) -> "RoutingConfig":
        return cls(
            base_domain=base_domain.lower(),
            reserved_subdomains=frozenset(r.lower() for r in reserved),
        )


def _strip_port(host: str) -> str:
    return host.split(":", 1)[0].strip().lower()


def tenant_from_host(host: str, config: RoutingConfig) -> Optional[str]:
    host = _strip_port(host)
    suffix = "." + config.base_domain
    if not host.endswith(suffix):
        return None

    subdomain = host[: -len(suffix)]
    if (
        not subdomain
        or subdomain in config.reserved_subdomains
        or len(subdomain) > 63
        or not SUBDOMAIN_PATTERN.match(subdomain)
    ):
        return None
    return subdomain


def resolve_tenant(host: str, uri: str, config: RoutingConfig) -> Tuple[Optional[str], str]:
    """Return (tenant, remaining uri). Subdomain first, then the /tenant-{id}/ path form."""
    tenant = tenant_from_host(host, config)
    if tenant:
        return tenant, uri

    if _strip_port(host).endswith(PROVIDER_HOST_SUFFIX):
        match = TENANT_PATH_PATTERN.match(uri)
        if match:
            return match.group(1).lower(), match.group(2) or "/"

    return None, uri


def normalize_path(uri: str) -> str:
    if not uri.startswith("/"):
        uri = "/" + uri
    if uri.endswith("/"):
        return uri + INDEX_FILE

    last_segment = uri.rsplit("/", 1)[-1]
    if "." not in last_segment:
        return f"{uri}/{INDEX_FILE}"
    return uri


def rewrite_uri(host: str, uri: str, config: RoutingConfig) -> str:
    # Query strings are carried separately by the CDN, so uri is a bare path.
    tenant, remaining = resolve_tenant(host, uri, config)
    if tenant is None:
        return NOT_FOUND_URI
    return f"/tenants/{tenant}/deployments/current{normalize_path(remaining)}"


def route_request(request: EdgeRequest, config: RoutingConfig) -> EdgeRequest:
    """Rewrite the request path. Method and headers pass through unchanged."""
    return replace(request, uri=rewrite_uri(request.host, request.uri, config))
