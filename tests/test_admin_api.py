"""Tests for pagesdns.app.api.admin: AdminAPI handler methods."""

import datetime
import json
from unittest.mock import MagicMock, patch

import cherrypy
import pytest

from pagesdns.app import utils
from pagesdns.app.api.admin import AdminAPI, GENERIC_ERROR
from pagesdns.app.errors import UpstreamTransientError
from pagesdns.app.token_manager import TokenManager
from pagesdns.app.types import DegradedResult, RecordResult


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def token_manager():
    tm = MagicMock()
    tm.refresh.return_value = "ghs_1234567890abcdef"
    return tm


@pytest.fixture
def dns():
    provider = MagicMock()
    provider.upsert.return_value = RecordResult("rec-1")
    return provider


@pytest.fixture
def registry(dns):
    reg = MagicMock()
    reg.for_installation.return_value = dns
    return reg


@pytest.fixture
def api(token_manager, registry):
    return AdminAPI(token_manager, registry, target_domain="org.github.io")


@pytest.fixture
def response():
    resp = MagicMock()
    with patch.object(cherrypy, "response", resp):
        yield resp


def _call(method, handler, body=None, **params):
    request = MagicMock()
    request.method = method
    request.body.read.return_value = json.dumps(body).encode() if body is not None else b""
    with patch.object(cherrypy, "request", request):
        return json.loads(handler(**params))


# ---------------------------------------------------------------------------
# refresh_token
# ---------------------------------------------------------------------------


def test_refresh_token_returns_preview(api, token_manager, response):
    result = _call("POST", api.refresh_token)

    token_manager.refresh.assert_called_once_with(force=True, strict=True)
    assert result["token_preview"] == "ghs_1..."
    assert "ghs_1234567890abcdef" not in json.dumps(result)
    assert response.status == 200


def test_refresh_token_without_token_is_500(api, token_manager, response):
    token_manager.refresh.return_value = ""
    _call("POST", api.refresh_token)
    assert response.status == 500


def test_refresh_token_failed_exchange_is_500(registry, response, patch_connect):
    """A stale stored token must not be reported as a successful refresh."""
    now = datetime.datetime(2024, 1, 1, 12, 0, 0)
    utils.store_token("ghs_oldstale", now - datetime.timedelta(hours=2))
    issuer = MagicMock()
    issuer.exchange.side_effect = UpstreamTransientError("503", status=503)
    manager = TokenManager(
        issuer, clock=lambda: now, max_retries=2, sleep=lambda _: None
    )
    api = AdminAPI(manager, registry)

    result = _call("POST", api.refresh_token)

    assert response.status == 500
    assert result == {"error": GENERIC_ERROR}
    assert issuer.exchange.call_count == 3


def test_refresh_token_requires_post(api, response):
    _call("GET", api.refresh_token)
    assert response.status == 405


# ---------------------------------------------------------------------------
# update_cname
# ---------------------------------------------------------------------------


def test_update_cname_upserts(api, dns, registry, response):
    result = _call("POST", api.update_cname, {"domain": "www.example.com"})

    registry.for_installation.assert_called_once_with(None)
    dns.upsert.assert_called_once_with("www.example.com", "org.github.io")
    assert result["record_id"] == "rec-1"
    assert result["degraded"] is False
    assert response.status == 200


def test_update_cname_explicit_target_and_installation(api, dns, registry, response):
    _call(
        "POST",
        api.update_cname,
        {"domain": "www.example.com", "target": "other.github.io", "installation_id": 5},
    )
    registry.for_installation.assert_called_once_with(5)
    dns.upsert.assert_called_once_with("www.example.com", "other.github.io")


def test_update_cname_degraded(api, dns, response):
    dns.upsert.return_value = DegradedResult("placeholder-1", "record already exists")
    result = _call("POST", api.update_cname, {"domain": "www.example.com"})
    assert result["degraded"] is True
    assert result["record_id"] is None


def test_update_cname_invalid_domain_is_400(api, dns, response):
    _call("POST", api.update_cname, {"domain": "not a domain"})
    assert response.status == 400
    dns.upsert.assert_not_called()


def test_update_cname_bad_json_is_400(api, response):
    request = MagicMock()
    request.method = "POST"
    request.body.read.return_value = b"{not json"
    with patch.object(cherrypy, "request", request):
        api.update_cname()
    assert response.status == 400


def test_update_cname_upstream_failure_hides_detail(api, dns, response):
    dns.upsert.side_effect = UpstreamTransientError("cf-token rejected by 10.0.0.1")

    result = _call("POST", api.update_cname, {"domain": "www.example.com"})

    assert response.status == 500
    assert result == {"error": GENERIC_ERROR}


# ---------------------------------------------------------------------------
# installations
# ---------------------------------------------------------------------------


def test_create_installation(api, response, patch_connect, encryption_key):
    body = {"installation_id": 42, "zone_id": "zone-a", "api_token": "cf-secret"}
    result = _call("POST", api.installations, body)

    assert response.status == 201
    assert result["installation_id"] == 42
    assert utils.get_installation_config(42).api_token == "cf-secret"


def test_create_installation_missing_field(api, response, patch_connect, encryption_key):
    _call("POST", api.installations, {"installation_id": 42, "zone_id": "zone-a"})
    assert response.status == 400


def test_create_installation_non_numeric_id(api, response):
    _call("POST", api.installations, {"installation_id": "abc", "zone_id": "z", "api_token": "t"})
    assert response.status == 400


def test_patch_installation(api, response, patch_connect, encryption_key):
    utils.store_installation_config(42, "zone-a", "cf-secret")

    result = _call("PATCH", api.installations, {"installation_id": 42, "zone_id": "zone-b"})

    assert response.status == 200
    assert result["changes"] == 1
    assert utils.get_installation_config(42).zone_id == "zone-b"


def test_patch_unknown_installation_is_404(api, response, patch_connect, encryption_key):
    _call("PATCH", api.installations, {"installation_id": 9, "zone_id": "zone-b"})
    assert response.status == 404


def test_patch_installation_empty_is_400(api, response, patch_connect):
    _call("PATCH", api.installations, {"installation_id": 42})
    assert response.status == 400


def test_installations_rejects_get(api, response):
    _call("GET", api.installations)
    assert response.status == 405


# ---------------------------------------------------------------------------
# mappings
# ---------------------------------------------------------------------------


def test_store_mapping(api, dns, response, patch_connect):
    result = _call(
        "POST",
        api.mappings,
        {"repo_name": "org/site", "custom_domain": "www.example.com"},
    )

    assert result["custom_domain"] == "www.example.com"
    assert utils.get_domain_mapping("org/site").custom_domain == "www.example.com"
    dns.upsert.assert_not_called()


def test_store_mapping_requires_repo_name(api, response, patch_connect):
    _call("POST", api.mappings, {"custom_domain": "www.example.com"})
    assert response.status == 400


def test_delete_mapping(api, dns, response, patch_connect):
    utils.store_domain_mapping("org/site", None, "www.example.com", "rec-1")

    _call("DELETE", api.mappings, repo_name="org/site")

    assert response.status == 200
    assert utils.get_domain_mapping("org/site") is None
    dns.delete_by_name.assert_not_called()


def test_delete_missing_mapping_is_404(api, response, patch_connect):
    _call("DELETE", api.mappings, repo_name="org/site")
    assert response.status == 404
