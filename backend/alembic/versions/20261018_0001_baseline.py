"""baseline: users, refresh tokens, blacklist, webhook events, meetings

Revision ID: 20261018_0001
Revises:
Create Date: 2026-10-18
"""

from __future__ import annotations

from alembic import op

from meethub_api.db import SCHEMA_VERSION, schema_statements


revision = "20261018_0001"
down_revision = None
branch_labels = None
depends_on = None

_TABLES = [
    "meeting_participants",
    "meetings",
    "webhook_events",
    "token_blacklist",
    "refresh_tokens",
    "users",
    "meta",
]


def upgrade() -> None:
    kind = "postgres" if op.get_bind().dialect.name == "postgresql" else "sqlite"
    for stmt in schema_statements(kind):
        op.execute(stmt)
    op.execute(f"INSERT INTO meta(key, value) VALUES ('schema_version', '{SCHEMA_VERSION}')")


def downgrade() -> None:
    for table in _TABLES:
        op.execute(f"DROP TABLE IF EXISTS {table}")
