import base64
from configparser import ConfigParser
import pytest
from datetime import datetime, timedelta, timezone
from flask import g, request
from userapi.errors import InsufficientScopeError, InvalidClientError
from userapi.errors import InvalidGrantError, InvalidRequestError
from userapi.errors import InvalidScopeError, InvalidTokenError, ServerError
from userapi.errors import TokenCollisionError, UnauthorizedClientError
from userapi.errors import UnauthorizedRequestError
from userapi.errors import UnsupportedGrantTypeError
from userapi.server import OAuth2Server, oauth
from userapi.testing import StaticAuthenticator
from userapi.types import OAuthToken
from tests.conftest import PASSWORD_CLIENT, SERVICE_CLIENT

def _form(client=PASSWORD_CLIENT, **fields):
    data = {
        "client_id": client["client_id"],
        "client_secret": client["client_secret"],
    }
    data.update(fields)
    return data

def _basic(client_id, client_secret):
    credentials = "{}:{}".format(client_id, client_secret).encode()
    return "Basic " + base64.b64encode(credentials).decode()

def _issue(app, server, data, **kwargs):
    with app.test_request_context("/token", method="POST",
            data=data, **kwargs):
        return server.issue_token(request)

def _password_token(app, server, **fields):
    return _issue(app, server, _form(grant_type="password",
        username="alice", password="secret", **fields))

def _authenticate(app, server, path="/", scope=None, optional=False,
        **kwargs):
    with app.test_request_context(path, **kwargs):
        return server.authenticate(request, scope=scope, optional=optional)

def _bearer(token):
    return {"Authorization": "Bearer " + token}

def test_password_grant(app, server, alice):
    token = _password_token(app, server, scope="profile")
    assert len(token["access_token"]) == 40
    assert len(token["refresh_token"]) == 40
    assert token["scope"] == "profile"
    assert token["user"] == {"id": alice}
    assert token["client"] == {"id": PASSWORD_CLIENT["client_id"]}
    lifetime = token["access_token_expires_at"] - datetime.now(timezone.utc)
    assert timedelta(minutes=59) < lifetime <= timedelta(hours=1)

def test_password_grant_with_basic_auth(app, server, alice):
    data = {"grant_type": "password", "username": "alice",
            "password": "secret"}
    headers = {"Authorization": _basic(PASSWORD_CLIENT["client_id"],
        PASSWORD_CLIENT["client_secret"])}
    token = _issue(app, server, data, headers=headers)
    assert token["user"] == {"id": alice}

def test_basic_auth_failure_is_401(app, server, alice):
    data = {"grant_type": "password", "username": "alice",
            "password": "secret"}
    headers = {"Authorization": _basic(PASSWORD_CLIENT["client_id"], "nope")}
    with pytest.raises(InvalidClientError) as info:
        _issue(app, server, data, headers=headers)
    assert info.value.code == 401

def test_password_grant_bad_credentials(app, server, alice):
    with pytest.raises(InvalidGrantError):
        _issue(app, server, _form(grant_type="password",
            username="alice", password="wrong"))

def test_password_grant_missing_parameters(app, server, alice):
    with pytest.raises(InvalidRequestError):
        _issue(app, server, _form(grant_type="password", username="alice"))
    with pytest.raises(InvalidRequestError):
        _issue(app, server, _form(grant_type="password", password="secret"))

def test_client_credentials_grant(app, server, storage, alice):
    token = _issue(app, server, _form(SERVICE_CLIENT,
        grant_type="client_credentials"))
    assert token["refresh_token"] is None
    assert token["user"] == {"id": 1}
    assert storage.table(OAuthToken).count() == 1

def test_refresh_token_grant(app, server, alice):
    first = _password_token(app, server, scope="profile")
    second = _issue(app, server, _form(grant_type="refresh_token",
        refresh_token=first["refresh_token"]))
    assert second["refresh_token"] != first["refresh_token"]
    assert second["scope"] == "profile"
    assert second["user"] == {"id": alice}
    assert server.model.get_refresh_token(first["refresh_token"]) is None
    with pytest.raises(InvalidGrantError):
        _issue(app, server, _form(grant_type="refresh_token",
            refresh_token=first["refresh_token"]))

def test_refresh_token_grant_expired(app, server, model, alice):
    now = datetime.now(timezone.utc)
    model.save_token({
        "access_token": "old-access",
        "access_token_expires_at": now - timedelta(days=2),
        "refresh_token": "old-refresh",
        "refresh_token_expires_at": now - timedelta(days=1),
    }, model.get_client(PASSWORD_CLIENT["client_id"]), {"id": alice})
    with pytest.raises(InvalidGrantError):
        _issue(app, server, _form(grant_type="refresh_token",
            refresh_token="old-refresh"))

def test_refresh_token_grant_other_client(app, server, model, alice):
    server.require_client_authentication["refresh_token"] = False
    token = _password_token(app, server)
    other = dict(SERVICE_CLIENT, grants="refresh_token")
    model.storage.table("oauth_client").where(
            client_id=SERVICE_CLIENT["client_id"]).delete()
    model.storage.table("oauth_client").insert(**other)
    with pytest.raises(InvalidGrantError):
        _issue(app, server, {"grant_type": "refresh_token",
            "client_id": SERVICE_CLIENT["client_id"],
            "refresh_token": token["refresh_token"]})

def test_request_validation(app, server):
    with app.test_request_context("/token", method="GET"):
        with pytest.raises(InvalidRequestError):
            server.issue_token(request)
    with app.test_request_context("/token", method="POST",
            json={"grant_type": "password"}):
        with pytest.raises(InvalidRequestError):
            server.issue_token(request)
    with pytest.raises(InvalidRequestError):
        _issue(app, server, _form())
    with pytest.raises(UnsupportedGrantTypeError):
        _issue(app, server, _form(grant_type="authorization_code"))

def test_client_validation(app, server, alice):
    with pytest.raises(InvalidClientError):
        _issue(app, server, {"grant_type": "password"})
    with pytest.raises(InvalidClientError):
        _issue(app, server, {"grant_type": "password",
            "client_id": PASSWORD_CLIENT["client_id"]})
    with pytest.raises(InvalidClientError) as info:
        _issue(app, server, _form(grant_type="password",
            client_secret="wrong"))
    assert info.value.code == 400
    with pytest.raises(UnauthorizedClientError):
        _issue(app, server, _form(grant_type="client_credentials"))

def test_invalid_scope(app, server, alice):
    with pytest.raises(InvalidScopeError):
        _password_token(app, server, scope='bad"scope')

def test_collision_retries(app, server, monkeypatch, alice):
    values = iter(["a" * 40, "b" * 40, "a" * 40, "c" * 40, "d" * 40,
        "e" * 40])
    monkeypatch.setattr("userapi.server.generate_token", lambda: next(values))
    first = _password_token(app, server)
    second = _password_token(app, server)
    assert first["access_token"] == "a" * 40
    assert second["access_token"] == "d" * 40

def test_collision_gives_up(app, server, monkeypatch, alice):
    def collide(*args):
        raise TokenCollisionError("Token value already issued")
    monkeypatch.setattr(server.model, "save_token", collide)
    with pytest.raises(ServerError) as info:
        _password_token(app, server)
    assert info.value.code == 503

def test_token_response(app, server, alice):
    token = _password_token(app, server, scope="profile")
    body = server.token_response(token)
    assert body["token_type"] == "Bearer"
    assert body["access_token"] == token["access_token"]
    assert body["refresh_token"] == token["refresh_token"]
    assert body["scope"] == "profile"
    assert 3500 < body["expires_in"] <= 3600

def test_authenticate_header(app, server, alice):
    token = _password_token(app, server, scope="profile")
    principal = _authenticate(app, server,
            headers=_bearer(token["access_token"]))
    assert principal == {
        "user_id": alice,
        "client_id": PASSWORD_CLIENT["client_id"],
        "scope": "profile",
    }

def test_authenticate_query_and_form(app, server, alice):
    token = _password_token(app, server)
    principal = _authenticate(app, server,
            path="/?access_token=" + token["access_token"])
    assert principal["user_id"] == alice
    principal = _authenticate(app, server, method="POST",
            data={"access_token": token["access_token"]})
    assert principal["user_id"] == alice

def test_authenticate_query_disabled(app, server, alice):
    server.allow_bearer_tokens_in_query_string = False
    token = _password_token(app, server)
    with pytest.raises(InvalidRequestError):
        _authenticate(app, server,
                path="/?access_token=" + token["access_token"])

def test_authenticate_rejects_two_methods(app, server, alice):
    token = _password_token(app, server)
    with pytest.raises(InvalidRequestError):
        _authenticate(app, server,
                path="/?access_token=" + token["access_token"],
                headers=_bearer(token["access_token"]))

def test_authenticate_failures(app, server, model, alice):
    with pytest.raises(UnauthorizedRequestError):
        _authenticate(app, server)
    with pytest.raises(InvalidRequestError):
        _authenticate(app, server, headers={"Authorization": "Bearer"})
    with pytest.raises(InvalidTokenError):
        _authenticate(app, server, headers=_bearer("missing"))

    now = datetime.now(timezone.utc)
    model.save_token({
        "access_token": "expired",
        "access_token_expires_at": now - timedelta(minutes=1),
    }, model.get_client(PASSWORD_CLIENT["client_id"]), {"id": alice})
    with pytest.raises(InvalidTokenError) as info:
        _authenticate(app, server, headers=_bearer("expired"))
    assert info.value.code == 401

def test_authenticate_scope(app, server, alice):
    token = _password_token(app, server, scope="profile email")
    principal = _authenticate(app, server, scope="email",
            headers=_bearer(token["access_token"]))
    assert principal["user_id"] == alice
    with pytest.raises(InsufficientScopeError) as info:
        _authenticate(app, server, scope="admin",
                headers=_bearer(token["access_token"]))
    assert info.value.code == 403

def test_authenticate_optional(app, server):
    assert _authenticate(app, server, optional=True) == \
            {"unauthenticated": True}
    assert _authenticate(app, server, optional=True,
            headers=_bearer("missing")) == {"unauthenticated": True}

def test_authenticate_client_credentials(app, server, alice):
    token = _issue(app, server, _form(SERVICE_CLIENT,
        grant_type="client_credentials"))
    principal = _authenticate(app, server,
            headers=_bearer(token["access_token"]))
    assert principal["user_id"] == 1
    assert principal["client_id"] == SERVICE_CLIENT["client_id"]

def test_revoke_token(app, server, alice):
    token = _password_token(app, server)
    assert server.revoke_token(token["refresh_token"]) is True
    assert server.revoke_token(token["refresh_token"]) is False
    with pytest.raises(InvalidTokenError):
        _authenticate(app, server, headers=_bearer(token["access_token"]))

def test_storage_failure_is_server_error(app, server, storage, alice):
    token = _password_token(app, server)
    storage.table(OAuthToken).table.drop(storage.engine)
    with pytest.raises(ServerError):
        _authenticate(app, server, headers=_bearer(token["access_token"]))

def test_oauth_decorator(app, server, alice):
    @app.route("/me")
    @oauth(server, scope="profile")
    def me():
        return {"user_id": g.oauth["user_id"]}

    token = _password_token(app, server, scope="profile")
    client = app.test_client()

    response = client.get("/me", headers=_bearer(token["access_token"]))
    assert response.status_code == 200
    assert response.get_json() == {"user_id": alice}

    response = client.get("/me")
    assert response.status_code == 401
    assert response.data == b""
    assert response.headers["WWW-Authenticate"].startswith("Bearer")

    response = client.get("/me", headers=_bearer("missing"))
    assert response.status_code == 401
    assert response.get_json()["error"] == "invalid_token"

def test_oauth_decorator_with_static_authenticator(app):
    @app.route("/me")
    @oauth(StaticAuthenticator(user_id=7, scope="profile"))
    def me():
        return dict(g.oauth)

    response = app.test_client().get("/me")
    assert response.status_code == 200
    assert response.get_json() == {
        "user_id": 7,
        "client_id": None,
        "scope": "profile",
    }

def test_from_config_defaults(model):
    server = OAuth2Server.from_config(model)
    assert server.access_token_lifetime == 3600
    assert server.refresh_token_lifetime == 1209600
    assert server.allow_bearer_tokens_in_query_string is True
    assert server.require_client_authentication["password"] is True

def test_authenticate_token_without_user(app, server, model):
    model.save_token({
        "access_token": "anonymous",
        "access_token_expires_at":
            datetime.now(timezone.utc) + timedelta(hours=1),
    }, model.get_client(PASSWORD_CLIENT["client_id"]), None)
    assert _authenticate(app, server, headers=_bearer("anonymous")) == {}

def _stored_token(monkeypatch, server, user_id, client_id):
    token = {
        "access_token": "stored",
        "access_token_expires_at":
            datetime.now(timezone.utc) + timedelta(hours=1),
        "client_id": client_id,
        "user_id": user_id,
    }
    monkeypatch.setattr(server.model, "get_access_token",
            lambda access_token: dict(token))

def test_authenticate_tags_client_credential(app, server, monkeypatch):
    _stored_token(monkeypatch, server, "svc", "svc")
    principal = _authenticate(app, server, headers=_bearer("stored"))
    assert principal == {
        "user_id": "svc",
        "client_id": "svc",
        "scope": None,
        "client_credential": True,
    }

def test_authenticate_non_decimal_user_id(app, server, monkeypatch):
    _stored_token(monkeypatch, server, "²", "svc")
    principal = _authenticate(app, server, headers=_bearer("stored"))
    assert principal["user_id"] == "²"
    assert "client_credential" not in principal

def test_from_config_client_authentication(app, model, monkeypatch, alice):
    parser = ConfigParser()
    parser.read_string("[userapi::oauth2]\n"
            "require-client-authentication=no\n")
    monkeypatch.setattr("userapi.config.config", parser)
    server = OAuth2Server.from_config(model)
    token = _issue(app, server, {"grant_type": "password",
        "client_id": PASSWORD_CLIENT["client_id"],
        "username": "alice", "password": "secret"})
    assert token["user"] == {"id": alice}
