from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "0001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "notification_modules",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("module_key", sa.String(length=100), nullable=False),
        sa.Column("module_name", sa.String(length=100), nullable=False),
        sa.Column("category", sa.String(length=50), nullable=True),
        sa.Column("parent_module_id", sa.Integer(), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("sort_order", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["parent_module_id"], ["notification_modules.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("module_key"),
    )
    op.create_index("idx_notification_modules_parent", "notification_modules", ["parent_module_id"], unique=False)
    op.create_index("idx_notification_modules_active", "notification_modules", ["is_active"], unique=False)

    op.create_table(
        "channel_configs",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("module_key", sa.String(length=100), nullable=False),
        sa.Column("endpoint_token", sa.String(length=255), nullable=False),
        sa.Column("target_chat_id", sa.String(length=64), nullable=True),
        sa.Column("display_name", sa.String(length=100), nullable=True),
        sa.Column("contact_name", sa.String(length=100), nullable=True),
        sa.Column("contact_phone", sa.String(length=32), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_channel_configs_module_active", "channel_configs", ["module_key", "is_active"], unique=False)

    op.create_table(
        "dispatch_jobs",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("module_key", sa.String(length=100), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("explicit_chat_id", sa.String(length=64), nullable=True),
        sa.Column("parse_mode", sa.String(length=16), nullable=True),
        sa.Column("priority", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("delay_ms", sa.BigInteger(), nullable=False, server_default=sa.text("0")),
        sa.Column("attempt_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("max_attempts", sa.Integer(), nullable=False, server_default=sa.text("5")),
        sa.Column("state", sa.String(length=16), nullable=False, server_default="waiting"),
        sa.Column("run_at", sa.DateTime(), nullable=False),
        sa.Column("locked_at", sa.DateTime(), nullable=True),
        sa.Column("locked_by", sa.String(length=128), nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("result", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.Column("finished_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_dispatch_jobs_due", "dispatch_jobs", ["state", "run_at"], unique=False)
    op.create_index("idx_dispatch_jobs_order", "dispatch_jobs", ["state", "priority", "id"], unique=False)
    op.create_index("idx_dispatch_jobs_finished", "dispatch_jobs", ["state", "finished_at"], unique=False)


def downgrade() -> None:
    op.drop_index("idx_dispatch_jobs_finished", table_name="dispatch_jobs")
    op.drop_index("idx_dispatch_jobs_order", table_name="dispatch_jobs")
    op.drop_index("idx_dispatch_jobs_due", table_name="dispatch_jobs")
    op.drop_table("dispatch_jobs")
    op.drop_index("idx_channel_configs_module_active", table_name="channel_configs")
    op.drop_table("channel_configs")
    op.drop_index("idx_notification_modules_active", table_name="notification_modules")
    op.drop_index("idx_notification_modules_parent", table_name="notification_modules")
    op.drop_table("notification_modules")
