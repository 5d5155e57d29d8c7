"""Connection registry

Revision ID: 20261019_0001
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""
from __future__ import annotations

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql


revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None


connection_status_enum = sa.Enum(
    "active",
    "inactive",
    name="connection_status_enum",
    native_enum=False,
)


def _guid_type(bind) -> sa.types.TypeEngine:
    if bind.dialect.name == "postgresql":
        return postgresql.UUID(as_uuid=True)
    return sa.String(length=36)


def upgrade() -> None:
    bind = op.get_bind()
    guid = _guid_type(bind)

    connection_status_enum.create(bind, checkfirst=True)

    op.create_table(
        "connections",
        sa.Column("id", guid, nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("status", connection_status_enum, nullable=False, server_default="active"),
        sa.Column("instance_url", sa.String(length=500), nullable=False),
        sa.Column("api_version", sa.String(length=32), nullable=False),
        sa.Column("client_id", sa.String(length=255), nullable=False),
        sa.Column("client_secret_enc", sa.String(), nullable=False),
        sa.Column("username", sa.String(length=255), nullable=False),
        sa.Column("password_enc", sa.String(), nullable=False),
        sa.Column("company_name", sa.String(length=255), nullable=True),
        sa.Column("branch_id", sa.String(length=64), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("name", name="uq_connection_name"),
    )
    op.create_index(
        "ix_connections_instance_user",
        "connections",
        ["instance_url", "username"],
    )


def downgrade() -> None:
    op.drop_index("ix_connections_instance_user", table_name="connections")
    op.drop_table("connections")
    connection_status_enum.drop(op.get_bind(), checkfirst=True)
