# build_engine/edge/function_code.py
"""Renders and publishes the viewer-request function for the shared distribution."""

import json
import logging

from build_engine.core.clients import CdnProvider
from build_engine.edge.routing import (
    INDEX_FILE,
    NOT_FOUND_URI,
    PROVIDER_HOST_SUFFIX,
    RoutingConfig,
)

logger = logging.getLogger(__name__)

_TEMPLATE = """\
// Generated by build_engine.edge.function_code. Do not edit by hand.
var BASE_DOMAIN = __BASE_DOMAIN__;
var RESERVED = __RESERVED__;
var PROVIDER_SUFFIX = __PROVIDER_SUFFIX__;
var NOT_FOUND_URI = __NOT_FOUND_URI__;
var INDEX_FILE = __INDEX_FILE__;

function tenantFromHost(host) {
    var suffix = '.' + BASE_DOMAIN;
    if (host.length <= suffix.length || host.slice(-suffix.length) !== suffix) {
        return null;
    }
    var sub = host.slice(0, -suffix.length);
    if (RESERVED.indexOf(sub) !== -1 || sub.length > 63) {
        return null;
    }
    if (!/^[a-z0-9]([a-z0-9-]*[a-z0-9])?$/.test(sub)) {
        return null;
    }
    return sub;
}

function normalizePath(uri) {
    if (uri.charAt(0) !== '/') {
        uri = '/' + uri;
    }
    if (uri.slice(-1) === '/') {
        return uri + INDEX_FILE;
    }
    var last = uri.slice(uri.lastIndexOf('/') + 1);
    if (last.indexOf('.') === -1) {
        return uri + '/' + INDEX_FILE;
    }
    return uri;
}

function handler(event) {
    var request = event.request;
    var host = request.headers.host ? request.headers.host.value.toLowerCase() : '';
    host = host.split(':')[0];

    var uri = request.uri;
    var tenant = tenantFromHost(host);

    if (!tenant && host.slice(-PROVIDER_SUFFIX.length) === PROVIDER_SUFFIX) {
        var match = uri.match(/^\\/tenant-([a-zA-Z0-9-]+)(\\/.*)?$/);
        if (match) {
            tenant = match[1].toLowerCase();
            uri = match[2] || '/';
        }
    }

    if (!tenant) {
        request.uri = NOT_FOUND_URI;
        return request;
    }

    request.uri = '/tenants/' + tenant + '/deployments/current' + normalizePath(uri);
    return request;
}
"""


def render_edge_function(config: RoutingConfig) -> str:
    replacements = {
        "__BASE_DOMAIN__": json.dumps(config.base_domain),
        "__RESERVED__": json.dumps(sorted(config.reserved_subdomains)),
        "__PROVIDER_SUFFIX__": json.dumps(PROVIDER_HOST_SUFFIX),
        "__NOT_FOUND_URI__": json.dumps(NOT_FOUND_URI),
        "__INDEX_FILE__": json.dumps(INDEX_FILE),
    }
    code = _TEMPLATE
    for placeholder, value in replacements.items():
        code = code.replace(placeholder, value)
    return code


def publish_edge_function(cdn: CdnProvider, name: str, config: RoutingConfig) -> str:
    code = render_edge_function(config)
    reference = cdn.publish_edge_function(name, code)
    logger.info(f"[edge] ✅ Published {name} for *.{config.base_domain}: {reference}")
    return reference
