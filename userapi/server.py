"""
OAuth 2.0 grant engine (RFC 6749, RFC 6750) for the password,
client_credentials and refresh_token grants, backed by OAuth2Model.

Requests are werkzeug/Flask request objects; nothing here routes or renders
HTTP beyond the oauth() view decorator.
"""
import logging
import re
import secrets
from datetime import datetime, timedelta, timezone
from flask import g, request as current_request
from functools import wraps
from prometheus_client import Counter
from sqlalchemy.exc import SQLAlchemyError
from userapi.config import cfgb, cfgi
from userapi.errors import OAuthError, ServerError, TokenCollisionError
from userapi.errors import InvalidClientError, InvalidGrantError
from userapi.errors import InvalidRequestError, InvalidScopeError
from userapi.errors import InvalidTokenError, InsufficientScopeError
from userapi.errors import UnauthorizedClientError, UnauthorizedRequestError
from userapi.errors import UnsupportedGrantTypeError

logger = logging.getLogger(__name__)

metrics = type("metrics", tuple(), {
    c.describe()[0].name: c
    for c in [
        Counter("userapi_tokens_issued", "Number of tokens issued"),
        Counter("userapi_tokens_refreshed", "Number of refresh token grants"),
        Counter("userapi_tokens_revoked", "Number of refresh tokens revoked"),
        Counter("userapi_auth_failed", "Number of failed authentications"),
    ]
})

_scope = re.compile(r"^[\x21\x23-\x5B\x5D-\x7E]+( [\x21\x23-\x5B\x5D-\x7E]+)*$")

def _storage_errors(f):
    @wraps(f)
    def wrapper(*args, **kwargs):
        try:
            return f(*args, **kwargs)
        except SQLAlchemyError as ex:
            logger.exception("Storage failure in %s", f.__name__)
            raise ServerError("Server error: {}".format(
                type(ex).__name__)) from ex
    return wrapper

def generate_token():
    return secrets.token_hex(20)

class OAuth2Server:
    max_attempts = 3
    grant_types = ["password", "client_credentials", "refresh_token"]

    def __init__(self, model,
            access_token_lifetime=3600,
            refresh_token_lifetime=1209600,
            allow_bearer_tokens_in_query_string=True,
            require_client_authentication=None):
        self.model = model
        self.access_token_lifetime = access_token_lifetime
        self.refresh_token_lifetime = refresh_token_lifetime
        self.allow_bearer_tokens_in_query_string = \
                allow_bearer_tokens_in_query_string
        self.require_client_authentication = \
                require_client_authentication or dict()
        self.grants = {
            "password": self._password_grant,
            "client_credentials": self._client_credentials_grant,
            "refresh_token": self._refresh_token_grant,
        }

    @classmethod
    def from_config(cls, model):
        required = cfgb("userapi::oauth2",
                "require-client-authentication", True)
        return cls(model,
                require_client_authentication={
                    grant: required for grant in cls.grant_types
                },
                access_token_lifetime=cfgi("userapi::oauth2",
                    "access-token-lifetime", 3600),
                refresh_token_lifetime=cfgi("userapi::oauth2",
                    "refresh-token-lifetime", 1209600),
                allow_bearer_tokens_in_query_string=cfgb("userapi::oauth2",
                    "allow-bearer-tokens-in-query-string", True))

    # Token endpoint

    @_storage_errors
    def issue_token(self, request):
        if request.method != "POST":
            raise InvalidRequestError("Invalid request: method must be POST")
        if request.mimetype != "application/x-www-form-urlencoded":
            raise InvalidRequestError("Invalid request: content must be "
                    "application/x-www-form-urlencoded")

        grant_type = request.form.get("grant_type")
        if not grant_type:
            raise InvalidRequestError("Missing parameter: `grant_type`")
        if grant_type not in self.grants:
            raise UnsupportedGrantTypeError(
                    "Unsupported grant type: `grant_type` is invalid")

        client = self._client(request, grant_type)
        if grant_type not in client["grants"]:
            raise UnauthorizedClientError(
                    "Unauthorized client: `grant_type` is invalid")

        scope = request.form.get("scope") or None
        if scope is not None and not _scope.match(scope):
            raise InvalidScopeError("Invalid parameter: `scope`")

        token = self.grants[grant_type](request, client, scope)
        metrics.userapi_tokens_issued.inc()
        return token

    def _client(self, request, grant_type):
        auth = request.authorization
        basic = auth is not None and auth.type == "basic"
        if basic:
            client_id, client_secret = auth.username, auth.password
        else:
            client_id = request.form.get("client_id")
            client_secret = request.form.get("client_secret")
        if not client_id:
            raise InvalidClientError("Missing parameter: `client_id`")
        required = self.require_client_authentication.get(grant_type, True)
        if required and not client_secret:
            raise InvalidClientError("Missing parameter: `client_secret`")

        client = self.model.get_client(client_id,
                client_secret if required else None)
        if not client:
            error = InvalidClientError("Invalid client: client is invalid")
            if basic:
                error.code = 401
            raise error
        return client

    def _password_grant(self, request, client, scope):
        username = request.form.get("username")
        password = request.form.get("password")
        if not username:
            raise InvalidRequestError("Missing parameter: `username`")
        if not password:
            raise InvalidRequestError("Missing parameter: `password`")
        user = self.model.get_user(username, password)
        if not user:
            raise InvalidGrantError(
                    "Invalid grant: user credentials are invalid")
        return self._save(client, user, scope, refresh=True)

    def _client_credentials_grant(self, request, client, scope):
        user = self.model.get_user_from_client(client)
        return self._save(client, user, scope, refresh=False)

    def _refresh_token_grant(self, request, client, scope):
        refresh_token = request.form.get("refresh_token")
        if not refresh_token:
            raise InvalidRequestError("Missing parameter: `refresh_token`")
        token = self.model.get_refresh_token(refresh_token)
        if not token:
            raise InvalidGrantError("Invalid grant: refresh token is invalid")
        if token["client"]["id"] != client["id"]:
            raise InvalidGrantError(
                    "Invalid grant: refresh token was issued to another client")
        expires = token["refresh_token_expires_at"]
        if expires and expires < datetime.now(timezone.utc):
            raise InvalidGrantError("Invalid grant: refresh token has expired")
        if not self.model.revoke_token(token):
            raise InvalidGrantError("Invalid grant: refresh token is invalid")
        metrics.userapi_tokens_refreshed.inc()
        return self._save(client, token["user"],
                token["scope"], refresh=True)

    def _save(self, client, user, scope, refresh):
        now = datetime.now(timezone.utc)
        for attempt in range(self.max_attempts):
            token = {
                "access_token": generate_token(),
                "access_token_expires_at":
                    now + timedelta(seconds=self.access_token_lifetime),
                "scope": scope,
            }
            if refresh:
                token["refresh_token"] = generate_token()
                token["refresh_token_expires_at"] = \
                    now + timedelta(seconds=self.refresh_token_lifetime)
            try:
                return self.model.save_token(token, client, user)
            except TokenCollisionError:
                logger.warning("Token collision for client %s, attempt %d",
                        client["id"], attempt + 1)
        raise ServerError("Server error: unable to generate a unique token")

    def token_response(self, token):
        """Renders a saved token as an RFC 6749 section 5.1 response body."""
        expires_in = token["access_token_expires_at"] - \
                datetime.now(timezone.utc)
        body = {
            "access_token": token["access_token"],
            "token_type": "Bearer",
            "expires_in": max(int(expires_in.total_seconds()), 0),
        }
        if token.get("refresh_token"):
            body["refresh_token"] = token["refresh_token"]
        if token.get("scope"):
            body["scope"] = token["scope"]
        return body

    # Protected resources

    def authenticate(self, request, scope=None, optional=False):
        """
        Validates the bearer token of a request and returns the principal it
        identifies: user_id, client_id and scope, and client_credential when
        the token was issued to a client rather than a user. With optional
        set, failures produce {"unauthenticated": True} instead of an error.
        """
        try:
            token = self._authenticate(request, scope)
        except OAuthError as ex:
            metrics.userapi_auth_failed.inc()
            if not optional:
                raise
            logger.debug("Continuing unauthenticated: %s", ex.message)
            return {"unauthenticated": True}
        return self._principal(token)

    @_storage_errors
    def _authenticate(self, request, scope):
        access_token = self._bearer_token(request)
        token = self.model.get_access_token(access_token)
        if not token:
            raise InvalidTokenError("Invalid token: access token is invalid")
        expires = token.get("access_token_expires_at")
        if not expires or expires < datetime.now(timezone.utc):
            raise InvalidTokenError("Invalid token: access token has expired")
        if scope:
            granted = set((token.get("scope") or "").split())
            if not set(scope.split()) <= granted:
                raise InsufficientScopeError(
                        "Insufficient scope: authorized scope is insufficient")
        return token

    def _bearer_token(self, request):
        found = []
        header = request.headers.get("Authorization")
        if header:
            parts = header.split(" ")
            if len(parts) != 2 or parts[0].lower() != "bearer":
                raise InvalidRequestError(
                        "Invalid request: malformed authorization header")
            found.append(parts[1])
        if request.args.get("access_token"):
            if not self.allow_bearer_tokens_in_query_string:
                raise InvalidRequestError("Invalid request: do not send "
                        "bearer tokens in query URLs")
            found.append(request.args["access_token"])
        if request.method == "POST" and \
                request.mimetype == "application/x-www-form-urlencoded" and \
                request.form.get("access_token"):
            found.append(request.form["access_token"])

        if len(found) > 1:
            raise InvalidRequestError("Invalid request: only one "
                    "authentication method is allowed")
        if not found:
            raise UnauthorizedRequestError(
                    "Unauthorized request: no authentication given")
        return found[0]

    def _principal(self, token):
        user_id = token.get("user_id")
        client_id = token.get("client_id")
        if not user_id:
            return dict()
        principal = {
            "user_id": user_id,
            "client_id": client_id,
            "scope": token.get("scope"),
        }
        if isinstance(user_id, int) or str(user_id).isdecimal():
            principal["user_id"] = int(user_id)
        elif user_id == client_id:
            principal["client_credential"] = True
        return principal

    # Revocation

    @_storage_errors
    def revoke_token(self, refresh_token):
        revoked = self.model.revoke_token({"refresh_token": refresh_token})
        if revoked:
            metrics.userapi_tokens_revoked.inc()
        return revoked

def oauth(authenticator, scope=None, optional=False):
    """
    Flask view decorator. Authenticates the current request and stores the
    principal in flask.g.oauth; OAuth errors are rendered as JSON.
    """
    def wrap(f):
        @wraps(f)
        def wrapper(*args, **kwargs):
            try:
                g.oauth = authenticator.authenticate(current_request,
                        scope=scope, optional=optional)
            except OAuthError as ex:
                headers = dict()
                if ex.code == 401:
                    headers["WWW-Authenticate"] = 'Bearer realm="Service"'
                if isinstance(ex, UnauthorizedRequestError):
                    return "", ex.code, headers
                return ex.to_dict(), ex.code, headers
            return f(*args, **kwargs)
        return wrapper
    return wrap
