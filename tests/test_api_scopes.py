import base64
import logging
from datetime import datetime, timedelta, timezone

import pytest

from access_core.core.errors import (
    ApiNetworkDenied,
    ApiTokenInvalid,
    ScopeConfigInvalid,
    ScopeDenied,
)
from access_core.core.security import pwd_context
from access_core.main import app
from access_core.models import ApiToken
from access_core.db.session import get_db
from access_core.services import api_tokens
from access_core.services.api_tokens import (
    authenticate,
    ip_allowed,
    normalize_scope_map,
    parse_basic_credentials,
    validate_scope,
)
from conftest import FakeResult, entity_handler, make_api_token

SECRET = "s3cret-value"


def _basic(key: str, secret: str) -> str:
    return "Basic " + base64.b64encode(f"{key}:{secret}".encode()).decode()


@pytest.fixture(scope="module")
def secret_hash() -> str:
    return pwd_context.hash(SECRET)


def test_granted_action_is_authorized() -> None:
    token = make_api_token(scopes={"host": ["get", "put"]})
    validate_scope(token, "host", "get")
    validate_scope(token, "host", "put")


def test_missing_action_is_denied(caplog) -> None:
    token = make_api_token(scopes={"host": ["get", "put"]})
    with caplog.at_level(logging.WARNING, logger="access_core.services.api_tokens"):
        with pytest.raises(ScopeDenied):
            validate_scope(token, "host", "delete")
    assert any(record.levelno == logging.WARNING for record in caplog.records)


def test_missing_resource_is_denied() -> None:
    token = make_api_token(scopes={"host": ["get", "put"]})
    with pytest.raises(ScopeDenied):
        validate_scope(token, "package", "get")


def test_no_wildcard_or_prefix_matching() -> None:
    token = make_api_token(scopes={"host": ["*"], "hosts": ["get"]})
    with pytest.raises(ScopeDenied):
        validate_scope(token, "host", "get")
    with pytest.raises(ScopeDenied):
        validate_scope(token, "hos", "get")


def test_missing_scope_map_is_a_configuration_error(caplog) -> None:
    token = make_api_token(scopes=None)
    with caplog.at_level(logging.ERROR, logger="access_core.services.api_tokens"):
        with pytest.raises(ScopeConfigInvalid):
            validate_scope(token, "host", "get")
    assert any(record.levelno == logging.ERROR for record in caplog.records)


def test_malformed_resource_entry_is_a_configuration_error() -> None:
    token = make_api_token(scopes={"host": "get"})
    with pytest.raises(ScopeConfigInvalid):
        validate_scope(token, "host", "get")


def test_interactive_tokens_skip_scope_checks() -> None:
    token = make_api_token(integration_type="agent", scopes=None)
    validate_scope(token, "host", "delete")


def test_scope_errors_map_to_403() -> None:
    assert ScopeDenied.status_code == 403
    assert ScopeConfigInvalid.status_code == 403
    assert ScopeDenied().code == "ScopeDenied"
    assert ScopeConfigInvalid().code == "ScopeConfigInvalid"


def test_normalize_scope_map() -> None:
    assert normalize_scope_map({"host": ["get", "get", "put"]}) == {"host": ["get", "put"]}
    assert normalize_scope_map(None) is None
    with pytest.raises(ValueError):
        normalize_scope_map({"host": "get"})
    with pytest.raises(ValueError):
        normalize_scope_map({"host": ["get", 1]})


def test_parse_basic_credentials() -> None:
    assert parse_basic_credentials(_basic("ak_1", "pw:with:colons")) == ("ak_1", "pw:with:colons")
    for header in (None, "Bearer abc", "Basic !!!", "Basic " + base64.b64encode(b"nocolon").decode()):
        with pytest.raises(ApiTokenInvalid):
            parse_basic_credentials(header)


def test_ip_allowed() -> None:
    assert ip_allowed("203.0.113.9", [])
    assert ip_allowed("203.0.113.9", ["203.0.113.0/24"])
    assert ip_allowed("2001:db8::1", ["2001:db8::/32"])
    assert not ip_allowed("198.51.100.1", ["203.0.113.0/24"])
    assert not ip_allowed(None, ["203.0.113.0/24"])
    assert not ip_allowed("198.51.100.1", ["not-a-range"])


@pytest.mark.asyncio
async def test_authenticate_success_updates_last_used(fake_db, secret_hash) -> None:
    token = make_api_token(token_secret_hash=secret_hash)
    fake_db.on_execute(entity_handler(ApiToken, FakeResult(scalar=token)))
    result = await authenticate(
        fake_db, _basic("ak_test", SECRET), integration_type="api", client_ip="10.0.0.1"
    )
    assert result is token
    assert token.last_used_at is not None
    assert fake_db.committed


@pytest.mark.asyncio
async def test_authenticate_unknown_key_and_wrong_secret(fake_db, secret_hash) -> None:
    with pytest.raises(ApiTokenInvalid):
        await authenticate(fake_db, _basic("ak_missing", SECRET), integration_type="api", client_ip=None)

    token = make_api_token(token_secret_hash=secret_hash)
    fake_db.on_execute(entity_handler(ApiToken, FakeResult(scalar=token)))
    with pytest.raises(ApiTokenInvalid):
        await authenticate(fake_db, _basic("ak_test", "wrong"), integration_type="api", client_ip=None)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "overrides",
    [
        {"is_active": False},
        {"expires_at": datetime.now(timezone.utc) - timedelta(days=1)},
        {"integration_type": "agent"},
    ],
)
async def test_authenticate_rejects_unusable_tokens(fake_db, secret_hash, overrides) -> None:
    token = make_api_token(token_secret_hash=secret_hash, **overrides)
    fake_db.on_execute(entity_handler(ApiToken, FakeResult(scalar=token)))
    with pytest.raises(ApiTokenInvalid):
        await authenticate(fake_db, _basic("ak_test", SECRET), integration_type="api", client_ip=None)


@pytest.mark.asyncio
async def test_authenticate_enforces_ip_ranges(fake_db, secret_hash) -> None:
    token = make_api_token(token_secret_hash=secret_hash, allowed_ip_ranges=["10.1.0.0/16"])
    fake_db.on_execute(entity_handler(ApiToken, FakeResult(scalar=token)))
    with pytest.raises(ApiNetworkDenied):
        await authenticate(fake_db, _basic("ak_test", SECRET), integration_type="api", client_ip="10.2.0.1")


@pytest.mark.asyncio
async def test_issue_token_returns_secret_once(fake_db) -> None:
    token, secret = await api_tokens.issue_token(
        fake_db,
        token_name="ci",
        created_by_user_id=None,
        scopes={"host": ["get"]},
        allowed_ip_ranges=["10.0.0.0/8"],
    )
    assert token.token_key.startswith("ak_")
    assert token.scopes == {"host": ["get"]}
    assert token.token_secret_hash != secret
    assert pwd_context.verify(secret, token.token_secret_hash)


@pytest.mark.asyncio
async def test_issue_token_rejects_bad_ip_range(fake_db) -> None:
    with pytest.raises(ValueError):
        await api_tokens.issue_token(
            fake_db, token_name="ci", created_by_user_id=None, allowed_ip_ranges=["nope"]
        )


def test_whoami_requires_scope_over_http(client, fake_db, secret_hash) -> None:
    async def _get_db():
        yield fake_db

    token = make_api_token(token_secret_hash=secret_hash, scopes={"token": ["get"]})
    fake_db.on_execute(entity_handler(ApiToken, FakeResult(scalar=token)))
    app.dependency_overrides[get_db] = _get_db
    try:
        ok = client.get("/api/v1/integrations/whoami", headers={"Authorization": _basic("ak_test", SECRET)})
        assert ok.status_code == 200
        assert ok.json()["token_key"] == "ak_test"

        token.scopes = {"host": ["get"]}
        denied = client.get("/api/v1/integrations/whoami", headers={"Authorization": _basic("ak_test", SECRET)})
        assert denied.status_code == 403
        assert denied.json()["code"] == "ScopeDenied"

        token.scopes = None
        broken = client.get("/api/v1/integrations/whoami", headers={"Authorization": _basic("ak_test", SECRET)})
        assert broken.status_code == 403
        assert broken.json()["code"] == "ScopeConfigInvalid"

        missing = client.get("/api/v1/integrations/whoami")
        assert missing.status_code == 401
        assert missing.json()["code"] == "ApiTokenInvalid"
    finally:
        app.dependency_overrides.clear()
