from __future__ import annotations

import sqlalchemy as sa
from alembic import op

revision = "0002_opening_hours"
down_revision = "0001_create_schema"
branch_labels = None
depends_on = None


def _inspector():
    return sa.inspect(op.get_bind())


def _columns_by_name(table_name: str) -> set[str]:
    return {column["name"] for column in _inspector().get_columns(table_name)}


def upgrade() -> None:
    inspector = _inspector()

    if not inspector.has_table("business_hours"):
        op.create_table(
            "business_hours",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("business_id", sa.Integer(), sa.ForeignKey("businesses.id"), nullable=False),
            sa.Column("day_of_week", sa.Integer(), nullable=False),
            sa.Column("open_time", sa.String(5), nullable=True),
            sa.Column("close_time", sa.String(5), nullable=True),
            sa.Column("is_closed", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.UniqueConstraint("business_id", "day_of_week", name="uq_business_hours_business_day"),
        )
        op.create_index("ix_business_hours_business_id", "business_hours", ["business_id"])

    if not inspector.has_table("special_dates"):
        op.create_table(
            "special_dates",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("business_id", sa.Integer(), sa.ForeignKey("businesses.id"), nullable=False),
            sa.Column("date", sa.Date(), nullable=False),
            sa.Column("name", sa.String(120), nullable=False),
            sa.Column("is_closed", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("open_time", sa.String(5), nullable=True),
            sa.Column("close_time", sa.String(5), nullable=True),
            sa.Column("created_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
            sa.UniqueConstraint("business_id", "date", name="uq_special_dates_business_date"),
        )
        op.create_index("ix_special_dates_business_id", "special_dates", ["business_id"])

    if "buffer_minutes" not in _columns_by_name("businesses"):
        op.add_column("businesses", sa.Column("buffer_minutes", sa.Integer(), nullable=True))
    if "buffer_minutes" not in _columns_by_name("services"):
        op.add_column("services", sa.Column("buffer_minutes", sa.Integer(), nullable=True))


def downgrade() -> None:
    if "buffer_minutes" in _columns_by_name("services"):
        op.drop_column("services", "buffer_minutes")
    if "buffer_minutes" in _columns_by_name("businesses"):
        op.drop_column("businesses", "buffer_minutes")

    inspector = _inspector()
    if inspector.has_table("special_dates"):
        op.drop_index("ix_special_dates_business_id", table_name="special_dates")
        op.drop_table("special_dates")
    if inspector.has_table("business_hours"):
        op.drop_index("ix_business_hours_business_id", table_name="business_hours")
        op.drop_table("business_hours")
