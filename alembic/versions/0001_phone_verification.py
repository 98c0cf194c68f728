# Copyright (C) 2024 uitdeITP Contributors
# SPDX-License-Identifier: GPL-3.0-or-later
"""Create users, kiosk_stations and phone_verifications.

Revision ID: 0001_phone_verification
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

revision: str = "0001_phone_verification"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("phone", sa.String(16), nullable=True),
        sa.Column("phone_verified", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id", name="pk_users"),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("ix_users_phone", "users", ["phone"])

    op.create_table(
        "kiosk_stations",
        sa.Column("id", sa.Integer(), autoincrement=True),
        sa.Column("slug", sa.String(64), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("sms_sender_name", sa.String(64), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id", name="pk_kiosk_stations"),
    )
    op.create_index("ix_kiosk_stations_slug", "kiosk_stations", ["slug"], unique=True)

    op.create_table(
        "phone_verifications",
        sa.Column("id", sa.String(36)),
        sa.Column("phone_number", sa.String(16), nullable=False),
        sa.Column("code", sa.String(12), nullable=False),
        sa.Column("purpose", sa.String(32), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("consumed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("consumed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("owner_id", sa.Integer(), nullable=True),
        sa.Column("station_id", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id", name="pk_phone_verifications"),
        sa.ForeignKeyConstraint(
            ["owner_id"], ["users.id"], name="fk_phone_verifications_owner_id_users"
        ),
        sa.ForeignKeyConstraint(
            ["station_id"], ["kiosk_stations.id"], name="fk_phone_verifications_station_id_kiosk_stations"
        ),
    )
    op.create_index(
        "uq_phone_verifications_open_code",
        "phone_verifications",
        ["phone_number", "purpose"],
        unique=True,
        postgresql_where=sa.text("consumed = false AND revoked_at IS NULL"),
    )
    op.create_index(
        "ix_phone_verifications_phone_created",
        "phone_verifications",
        ["phone_number", "created_at"],
    )


def downgrade() -> None:
    op.drop_index("ix_phone_verifications_phone_created", table_name="phone_verifications")
    op.drop_index("uq_phone_verifications_open_code", table_name="phone_verifications")
    op.drop_table("phone_verifications")
    op.drop_index("ix_kiosk_stations_slug", table_name="kiosk_stations")
    op.drop_table("kiosk_stations")
    op.drop_index("ix_users_phone", table_name="users")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")
