"""
Storage side of the OAuth 2.0 grant flows.

OAuth2Model supplies the data operations the grant engine in
userapi.server calls: client, user and token lookup, token persistence and
revocation. It makes no protocol decisions of its own (expiry checks, grant
type branching and scope handling happen in the engine), with one exception:
client credential tokens are attributed to a fixed placeholder user.
"""
import re
from datetime import datetime, timezone
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from userapi.config import cfgi
from userapi.errors import InvalidClientError, InvalidGrantError
from userapi.errors import TokenCollisionError
from userapi.types import OAuthClient, OAuthToken
from userapi.users import UserRepository

_separators = re.compile(r"[, ]+")

def _split(value):
    return [v for v in _separators.split(value or "") if v]

def _unix(value):
    if value is None:
        return None
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return int(value.timestamp())
    return int(value)

def _datetime(value):
    if value is None:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)

def _numeric(value):
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return True
    return isinstance(value, str) and value.isdecimal()

class OAuth2Model:
    def __init__(self, storage, users=None, client_credentials_user=1):
        self.storage = storage
        self.users = users or UserRepository(storage)
        self.client_credentials_user = client_credentials_user

    @classmethod
    def from_config(cls, storage):
        return cls(storage, client_credentials_user=cfgi("userapi::oauth2",
            "client-credentials-user", 1))

    def _tokens(self):
        return self.storage.table(OAuthToken)

    def _clients(self):
        return self.storage.table(OAuthClient)

    def get_access_token(self, access_token):
        token = self._tokens().where(access_token=access_token).first()
        if not token:
            return None
        result = {
            "access_token": token["access_token"],
            "access_token_expires_at":
                _datetime(token["access_token_expires_at"]),
            "scope": token["scope"],
            "client_id": token["client_id"],
            "client": {"id": token["client_id"]},
            "user_id": token["user_id"],
            "user": ({"id": token["user_id"]}
                if token["user_id"] is not None else None),
        }
        return {k: v for k, v in result.items() if v is not None}

    def get_refresh_token(self, refresh_token):
        """
        Looks up a refresh token. The expiry is returned but not checked;
        that is left to the caller. Returns None when there is no such token.
        """
        token = self._tokens().where(refresh_token=refresh_token).first()
        if not token:
            return None
        return {
            "refresh_token": token["refresh_token"],
            "refresh_token_expires_at":
                _datetime(token["refresh_token_expires_at"]),
            "scope": token["scope"],
            "client": {"id": token["client_id"]},
            "user": {"id": token["user_id"]},
        }

    def get_client(self, client_id, client_secret=None):
        condition = {
            k: v for k, v in [
                ("client_id", client_id),
                ("client_secret", client_secret),
            ] if v
        }
        if not condition:
            return None
        client = self._clients().where(**condition).first()
        if not client:
            return None
        return {
            "id": client["client_id"],
            "redirect_uris": _split(client["redirect_uris"]),
            "grants": _split(client["grants"]),
        }

    def get_user(self, username, password):
        users = self.users.find({"username": username, "password": password})
        return users[0] if users else None

    def save_token(self, token, client, user):
        user_id = user.get("id") if user else None
        if user_id is not None:
            user_id = int(user_id) if _numeric(user_id) \
                    else self.client_credentials_user
        values = {
            "access_token": token["access_token"],
            "access_token_expires_at":
                _unix(token.get("access_token_expires_at")),
            "refresh_token": token.get("refresh_token"),
            "refresh_token_expires_at":
                _unix(token.get("refresh_token_expires_at")),
            "scope": token.get("scope"),
            "client_id": client["id"],
            "user_id": user_id,
        }
        try:
            token_id = self._tokens().insert(**values)
        except IntegrityError:
            if self._collides(values):
                raise TokenCollisionError(
                        "Token value already issued")
            raise
        saved = self._tokens().where(id=token_id).first()
        return {
            "access_token": saved["access_token"],
            "access_token_expires_at":
                _datetime(saved["access_token_expires_at"]),
            "refresh_token": saved["refresh_token"],
            "refresh_token_expires_at":
                _datetime(saved["refresh_token_expires_at"]),
            "scope": saved["scope"],
            "client": {"id": saved["client_id"]},
            "user": {"id": saved["user_id"]},
        }

    def _collides(self, values):
        if self._tokens().where(access_token=values["access_token"]).count():
            return True
        return bool(values["refresh_token"]) and bool(self._tokens()
                .where(refresh_token=values["refresh_token"]).count())

    def get_user_from_client(self, client):
        """
        Builds the identity a client_credentials token is issued to: the
        client itself.
        """
        if "client_credentials" not in client["grants"]:
            raise InvalidGrantError("Invalid grant authentication flow")
        row = self._clients().where(client_id=client["id"]).first()
        if not row:
            raise InvalidClientError("Invalid client: client is invalid")
        return {
            "id": client["id"],
            "client_id": row["client_id"],
            "grants": client["grants"],
        }

    def revoke_token(self, token):
        refresh_token = token.get("refresh_token")
        if not refresh_token:
            return False
        deleted = (self._tokens()
                .where(refresh_token=refresh_token)
                .limit(1)
                .delete())
        return deleted > 0

    def purge_expired(self, now=None):
        """
        Deletes tokens which can no longer be used: the access token has
        expired and there is no refresh token which has not.
        """
        now = _unix(now or datetime.now(timezone.utc))
        tokens = self._tokens()
        return tokens.filter(
            tokens.column("access_token_expires_at") <= now,
            or_(tokens.column("refresh_token").is_(None),
                tokens.column("refresh_token_expires_at") <= now),
        ).delete()
