import sqlalchemy as sa
from userapi.fields import FieldMap
from userapi.types import Base

class User(Base):
    __tablename__ = 'user'
    id = sa.Column(sa.Integer, primary_key=True)
    name = sa.Column(sa.Unicode(100), nullable=False)
    username = sa.Column(sa.Unicode(256), unique=True)
    password_hash = sa.Column(sa.String(64))
    "SHA-256 hex digest of the user's password"
    created_at = sa.Column(sa.DateTime, nullable=False,
            server_default=sa.func.now())
    updated_at = sa.Column(sa.DateTime)

    fields = FieldMap('user', {
        'id': 'id',
        'name': 'name',
        'username': 'username',
        'password': 'password_hash',
        'created_at': 'created_at',
        'updated_at': 'updated_at',
    })
