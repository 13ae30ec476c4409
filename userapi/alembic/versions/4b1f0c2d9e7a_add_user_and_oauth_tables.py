"""Add user and OAuth 2.0 tables

Revision ID: 4b1f0c2d9e7a
Revises: None
Create Date: 2026-10-19 10:12:44.208133

"""

# revision identifiers, used by Alembic.
revision = '4b1f0c2d9e7a'
down_revision = None

from alembic import op
import sqlalchemy as sa


def upgrade():
    op.create_table("user",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("name", sa.Unicode(100), nullable=False),
        sa.Column("username", sa.Unicode(256), unique=True),
        sa.Column("password_hash", sa.String(64)),
        sa.Column("created_at", sa.DateTime, nullable=False,
            server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime))
    op.create_table("oauth_client",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("client_id", sa.String(256), nullable=False, unique=True),
        sa.Column("client_secret", sa.String(256),
            nullable=False, unique=True),
        sa.Column("redirect_uri", sa.String(1024), nullable=False,
            server_default=''),
        sa.Column("grants", sa.String(256), nullable=False,
            server_default=''),
        sa.Column("created_at", sa.DateTime, nullable=False,
            server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime))
    op.create_table("oauth_token",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("access_token", sa.String(256), unique=True),
        sa.Column("access_token_expires_at", sa.Integer),
        sa.Column("refresh_token", sa.String(256), unique=True),
        sa.Column("refresh_token_expires_at", sa.Integer),
        sa.Column("user", sa.Integer,
            sa.ForeignKey("user.id", ondelete="CASCADE"),
            index=True),
        sa.Column("client_id", sa.String(256),
            sa.ForeignKey("oauth_client.client_id", ondelete="CASCADE"),
            nullable=False, index=True),
        sa.Column("scope", sa.String(512)))

def downgrade():
    op.drop_table("oauth_token")
    op.drop_table("oauth_client")
    op.drop_table("user")
