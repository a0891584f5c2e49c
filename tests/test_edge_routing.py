#tests\test_edge_routing.py

"""Test viewer-request routing for the shared distribution."""

import pytest

from build_engine.edge.function_code import publish_edge_function, render_edge_function
from build_engine.edge.routing import (
    NOT_FOUND_URI,
    EdgeRequest,
    RoutingConfig,
    normalize_path,
    resolve_tenant,
    rewrite_uri,
    route_request,
    tenant_from_host,
)

from factories import BASE_DOMAIN


@pytest.fixture
def config():
    return RoutingConfig.build(BASE_DOMAIN)


class TestTenantFromHost:
    """Test subdomain extraction."""

    @pytest.mark.parametrize("host,tenant", [
        ("t1.example.com", "t1"),
        ("T1.Example.COM", "t1"),
        ("acme-co.example.com:443", "acme-co"),
    ])
    def test_tenant_subdomain(self, config, host, tenant):
        """Test valid subdomains map to tenants."""
        assert tenant_from_host(host, config) == tenant

    @pytest.mark.parametrize("host", [
        "www.example.com",
        "api.example.com",
        "example.com",
        "t1.other.com",
        "-bad.example.com",
        "a.b.example.com",
        "x" * 64 + ".example.com",
    ])
    def test_not_a_tenant(self, config, host):
        """Test reserved, bare, foreign and malformed hosts."""
        assert tenant_from_host(host, config) is None

    def test_custom_reserved(self):
        """Test the reserved set is configurable."""
        config = RoutingConfig.build(BASE_DOMAIN, reserved=["Status"])

        assert tenant_from_host("status.example.com", config) is None
        assert tenant_from_host("www.example.com", config) == "www"


class TestNormalizePath:
    """Test directory and extensionless path handling."""

    @pytest.mark.parametrize("uri,expected", [
        ("/", "/index.html"),
        ("/about/", "/about/index.html"),
        ("/about", "/about/index.html"),
        ("/_next/static/app.js", "/_next/static/app.js"),
        ("about", "/about/index.html"),
    ])
    def test_normalize(self, uri, expected):
        """Test index files are appended where a page is meant."""
        assert normalize_path(uri) == expected


class TestRewrite:
    """Test the full rewrite."""

    def test_root(self, config):
        """Test the root path of a tenant."""
        assert rewrite_uri("t1.example.com", "/", config) == "/tenants/t1/deployments/current/index.html"

    def test_asset(self, config):
        """Test asset paths are kept."""
        assert rewrite_uri("t1.example.com", "/_next/static/app.js", config) == (
            "/tenants/t1/deployments/current/_next/static/app.js"
        )

    def test_reserved_host(self, config):
        """Test reserved subdomains get the not-found page."""
        assert rewrite_uri("www.example.com", "/", config) == NOT_FOUND_URI

    def test_provider_host_path_form(self, config):
        """Test the /tenant-{id}/ form on the provider's own hostname."""
        host = "dshared.cloudfront.net"

        assert resolve_tenant(host, "/tenant-T1/about", config) == ("t1", "/about")
        assert rewrite_uri(host, "/tenant-t1", config) == "/tenants/t1/deployments/current/index.html"
        assert rewrite_uri(host, "/about", config) == NOT_FOUND_URI

    def test_path_form_only_on_provider_host(self, config):
        """Test the path form is ignored on other hosts."""
        assert rewrite_uri("example.com", "/tenant-t1/", config) == NOT_FOUND_URI

    def test_route_request_keeps_headers(self, config):
        """Test method and headers pass through unmodified."""
        request = EdgeRequest(
            method="GET",
            uri="/pricing",
            headers={"Host": "t1.example.com", "Accept": "text/html"},
        )

        routed = route_request(request, config)

        assert routed.uri == "/tenants/t1/deployments/current/pricing/index.html"
        assert routed.method == "GET"
        assert routed.headers == request.headers

    def test_missing_host(self, config):
        """Test a request without a host header is not routed to a tenant."""
        routed = route_request(EdgeRequest(method="GET", uri="/"), config)
        assert routed.uri == NOT_FOUND_URI


class TestEdgeFunction:
    """Test the rendered JavaScript function."""

    def test_render(self, config):
        """Test constants are embedded in the function source."""
        code = render_edge_function(config)

        assert "function handler(event)" in code
        assert 'var BASE_DOMAIN = "example.com";' in code
        assert '"www"' in code
        assert NOT_FOUND_URI in code
        assert "__BASE_DOMAIN__" not in code

    def test_publish(self, config, cdn):
        """Test publishing hands the code to the CDN provider."""
        reference = publish_edge_function(cdn, "tenant-router", config)

        assert reference == "arn:fake:function/tenant-router"
        assert cdn.functions["tenant-router"] == render_edge_function(config)
