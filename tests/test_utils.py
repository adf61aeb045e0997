"""Tests for pagesdns.app.utils: state store and credential store functions."""

import datetime

import pytest

from pagesdns.app import utils
from pagesdns.app.db.models import CloudflareRecord, Installation, PagesUrl, Token
from pagesdns.app.errors import CredentialError, ValidationError
from pagesdns.config import config

NOW = datetime.datetime(2024, 1, 1, 12, 0, 0)


# ---------------------------------------------------------------------------
# Domain mappings
# ---------------------------------------------------------------------------


def test_get_domain_mapping_missing_returns_none(patch_connect):
    assert utils.get_domain_mapping("org/site") is None


def test_store_domain_mapping_inserts_row(patch_connect):
    mapping = utils.store_domain_mapping(
        "org/site", "https://org.github.io/site", "WWW.Example.com."
    )

    assert mapping.custom_domain == "www.example.com"
    row = patch_connect.get(PagesUrl, "org/site")
    assert row.pages_url == "https://org.github.io/site"
    assert row.custom_domain == "www.example.com"


def test_store_domain_mapping_with_record_id(patch_connect):
    utils.store_domain_mapping("org/site", None, "www.example.com", "rec-1")

    mapping = utils.get_domain_mapping("org/site")
    assert mapping.record_id == "rec-1"
    row = patch_connect.query(CloudflareRecord).filter_by(repo_name="org/site").one()
    assert row.cname_record == "rec-1"


def test_store_domain_mapping_keeps_record_id_by_default(patch_connect):
    utils.store_domain_mapping("org/site", None, "www.example.com", "rec-1")
    utils.store_domain_mapping("org/site", "https://org.github.io/site", "www.example.com")

    assert utils.get_domain_mapping("org/site").record_id == "rec-1"


def test_store_domain_mapping_none_clears_record_id(patch_connect):
    utils.store_domain_mapping("org/site", None, "www.example.com", "rec-1")
    utils.store_domain_mapping("org/site", None, "new.example.com", None)

    mapping = utils.get_domain_mapping("org/site")
    assert mapping.custom_domain == "new.example.com"
    assert mapping.record_id is None
    assert patch_connect.query(CloudflareRecord).count() == 0


def test_store_domain_mapping_updates_existing_row(patch_connect):
    utils.store_domain_mapping("org/site", None, "a.example.com")
    utils.store_domain_mapping("org/site", None, "b.example.com")

    assert patch_connect.query(PagesUrl).count() == 1
    assert utils.get_domain_mapping("org/site").custom_domain == "b.example.com"


def test_store_domain_mapping_allows_absent_domain(patch_connect):
    mapping = utils.store_domain_mapping("org/site", None, None)
    assert mapping.custom_domain is None


@pytest.mark.parametrize("repo", ["", "no-slash", "org/site/extra", "org/si te"])
def test_store_domain_mapping_rejects_bad_repo_name(patch_connect, repo):
    with pytest.raises(ValidationError):
        utils.store_domain_mapping(repo, None, "www.example.com")


def test_store_domain_mapping_accepts_dotted_repo_name(patch_connect):
    utils.store_domain_mapping("org/org.github.io", None, "www.example.com")
    assert utils.get_domain_mapping("org/org.github.io") is not None


def test_store_domain_mapping_rejects_bad_url(patch_connect):
    with pytest.raises(ValidationError):
        utils.store_domain_mapping("org/site", "ftp://nowhere", "www.example.com")


def test_store_domain_mapping_rejects_bad_domain(patch_connect):
    with pytest.raises(ValidationError):
        utils.store_domain_mapping("org/site", None, "not a domain")


def test_store_domain_mapping_rejects_oversized_input(patch_connect):
    with pytest.raises(ValidationError):
        utils.store_domain_mapping("org/site", "https://x.io/" + "a" * 3000, None)


def test_remove_domain_mapping(patch_connect):
    utils.store_domain_mapping("org/site", None, "www.example.com", "rec-1")

    assert utils.remove_domain_mapping("org/site") is True
    assert utils.get_domain_mapping("org/site") is None
    assert patch_connect.query(CloudflareRecord).count() == 0


def test_remove_domain_mapping_missing_returns_false(patch_connect):
    assert utils.remove_domain_mapping("org/site") is False


def test_count_domain_mappings(patch_connect):
    assert utils.count_domain_mappings() == 0
    utils.store_domain_mapping("org/a", None, "a.example.com")
    utils.store_domain_mapping("org/b", None, None)
    assert utils.count_domain_mappings() == 2


# ---------------------------------------------------------------------------
# Installation token
# ---------------------------------------------------------------------------


def test_get_stored_token_empty(patch_connect):
    assert utils.get_stored_token() is None


def test_store_token_overwrites_single_row(patch_connect):
    utils.store_token("ghs_first", NOW + datetime.timedelta(hours=1))
    utils.store_token("ghs_second", NOW + datetime.timedelta(hours=2))

    assert patch_connect.query(Token).count() == 1
    stored = utils.get_stored_token()
    assert stored.value == "ghs_second"
    assert stored.expires_at == NOW + datetime.timedelta(hours=2)


def test_store_token_requires_fields(patch_connect):
    with pytest.raises(ValidationError):
        utils.store_token("", NOW)


def test_is_token_expired_without_token(patch_connect):
    assert utils.is_token_expired(now=NOW) is True


def test_is_token_expired_respects_buffer(patch_connect):
    utils.store_token("ghs_x", NOW + datetime.timedelta(minutes=4))
    assert utils.is_token_expired(datetime.timedelta(minutes=5), now=NOW) is True

    utils.store_token("ghs_x", NOW + datetime.timedelta(minutes=6))
    assert utils.is_token_expired(datetime.timedelta(minutes=5), now=NOW) is False


def test_is_token_expired_on_read_failure(monkeypatch):
    def boom():
        raise RuntimeError("db down")

    monkeypatch.setattr("pagesdns.app.utils.connect", boom)
    assert utils.is_token_expired(now=NOW) is True


# ---------------------------------------------------------------------------
# Installation configs
# ---------------------------------------------------------------------------


def test_store_installation_config_encrypts_token(patch_connect, encryption_key):
    utils.store_installation_config(42, "zone-a", "cf-secret", "ops@example.com")

    row = patch_connect.get(Installation, 42)
    assert row.cloudflare_api_token != "cf-secret"
    assert len(row.cloudflare_api_token.split(":")) == 4

    cfg = utils.get_installation_config(42)
    assert cfg.zone_id == "zone-a"
    assert cfg.api_token == "cf-secret"
    assert cfg.email == "ops@example.com"


def test_store_installation_config_requires_fields(patch_connect, encryption_key):
    with pytest.raises(ValidationError):
        utils.store_installation_config(42, "", "cf-secret")


def test_get_installation_config_missing(patch_connect):
    assert utils.get_installation_config(7) is None


def test_get_installation_config_wrong_key_raises(patch_connect, encryption_key):
    utils.store_installation_config(42, "zone-a", "cf-secret")
    config.set("encryption_key", "another-key-that-is-long-enough-000000")

    with pytest.raises(CredentialError):
        utils.get_installation_config(42)


def test_update_installation_config_partial(patch_connect, encryption_key):
    utils.store_installation_config(42, "zone-a", "cf-secret", "ops@example.com")

    result = utils.update_installation_config(42, {"zone_id": "zone-b"})

    assert result == {"installation_id": 42, "changes": 1}
    cfg = utils.get_installation_config(42)
    assert cfg.zone_id == "zone-b"
    assert cfg.api_token == "cf-secret"
    assert cfg.email == "ops@example.com"


def test_update_installation_config_rotates_token(patch_connect, encryption_key):
    utils.store_installation_config(42, "zone-a", "cf-secret")
    utils.update_installation_config(42, {"api_token": "cf-rotated"})

    assert utils.get_installation_config(42).api_token == "cf-rotated"


def test_update_installation_config_missing_row(patch_connect, encryption_key):
    result = utils.update_installation_config(99, {"zone_id": "zone-b"})
    assert result["changes"] == 0


def test_update_installation_config_empty_patch(patch_connect):
    with pytest.raises(ValidationError):
        utils.update_installation_config(42, {})
