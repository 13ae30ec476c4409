import sqlalchemy as sa
from userapi.fields import FieldMap
from userapi.types import Base

class OAuthClient(Base):
    __tablename__ = 'oauth_client'
    id = sa.Column(sa.Integer, primary_key=True)
    client_id = sa.Column(sa.String(256), nullable=False, unique=True)
    client_secret = sa.Column(sa.String(256), nullable=False, unique=True)
    redirect_uri = sa.Column(sa.String(1024), nullable=False,
            server_default='')
    "Comma or space separated list of redirect URIs"
    grants = sa.Column(sa.String(256), nullable=False, server_default='')
    "Comma or space separated list of grant types"
    created_at = sa.Column(sa.DateTime, nullable=False,
            server_default=sa.func.now())
    updated_at = sa.Column(sa.DateTime)

    fields = FieldMap('oauth_client', {
        'id': 'id',
        'client_id': 'client_id',
        'client_secret': 'client_secret',
        'redirect_uris': 'redirect_uri',
        'grants': 'grants',
        'created_at': 'created_at',
        'updated_at': 'updated_at',
    })
