import sqlalchemy as sa
from userapi.fields import FieldMap
from userapi.types import Base

class OAuthToken(Base):
    __tablename__ = 'oauth_token'
    id = sa.Column(sa.Integer, primary_key=True)
    access_token = sa.Column(sa.String(256), unique=True)
    access_token_expires_at = sa.Column(sa.Integer)
    "Unix timestamp"
    refresh_token = sa.Column(sa.String(256), unique=True)
    refresh_token_expires_at = sa.Column(sa.Integer)
    "Unix timestamp"
    user = sa.Column(sa.Integer,
            sa.ForeignKey('user.id', ondelete="CASCADE"),
            index=True)
    client_id = sa.Column(sa.String(256),
            sa.ForeignKey('oauth_client.client_id', ondelete="CASCADE"),
            nullable=False, index=True)
    scope = sa.Column(sa.String(512))

    fields = FieldMap('oauth_token', {
        'id': 'id',
        'access_token': 'access_token',
        'access_token_expires_at': 'access_token_expires_at',
        'refresh_token': 'refresh_token',
        'refresh_token_expires_at': 'refresh_token_expires_at',
        'user_id': 'user',
        'client_id': 'client_id',
        'scope': 'scope',
    })
