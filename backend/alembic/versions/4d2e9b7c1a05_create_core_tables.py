"""create identity, staff, trust and moderation tables

Revision ID: 4d2e9b7c1a05
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "4d2e9b7c1a05"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("uuid", sa.String(length=36), nullable=False),
        sa.Column("nickname", sa.String(length=50), nullable=False),
        sa.Column("emoji", sa.String(length=10), nullable=False),
        sa.Column("county", sa.String(length=50), nullable=True),
        sa.Column("trust_score", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("standing", sa.String(length=20), nullable=False, server_default="normal"),
        sa.Column("violation_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_deleted", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("last_active_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_users_uuid"), "users", ["uuid"], unique=True)
    op.create_index(op.f("ix_users_standing"), "users", ["standing"], unique=False)
    op.create_index(op.f("ix_users_created_at"), "users", ["created_at"], unique=False)

    op.create_table(
        "staff_users",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("email", sa.String(length=320), nullable=False),
        sa.Column("hashed_password", sa.String(length=255), nullable=False),
        sa.Column("role", sa.String(length=20), nullable=False, server_default="viewer"),
        sa.Column("permissions_raw", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("token_version", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("failed_logins", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("locked_until", sa.DateTime(), nullable=True),
        sa.Column("last_login_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_staff_users_email"), "staff_users", ["email"], unique=True)
    op.create_index(op.f("ix_staff_users_created_at"), "staff_users", ["created_at"], unique=False)

    op.create_table(
        "global_logout_marker",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("invalidated_at", sa.DateTime(), nullable=True),
        sa.Column("actor_staff_id", sa.Integer(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "trust_score_events",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("cause", sa.String(length=40), nullable=False),
        sa.Column("cause_ref", sa.String(length=64), nullable=True),
        sa.Column("requested_delta", sa.Integer(), nullable=False),
        sa.Column("applied_delta", sa.Integer(), nullable=False),
        sa.Column("score_after", sa.Integer(), nullable=False),
        sa.Column("reason", sa.String(length=255), nullable=True),
        sa.Column("actor_staff_id", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["actor_staff_id"], ["staff_users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "cause", "cause_ref", name="uq_trust_event_cause"),
    )
    op.create_index(op.f("ix_trust_score_events_user_id"), "trust_score_events", ["user_id"], unique=False)
    op.create_index(op.f("ix_trust_score_events_cause"), "trust_score_events", ["cause"], unique=False)
    op.create_index(op.f("ix_trust_score_events_created_at"), "trust_score_events", ["created_at"], unique=False)

    op.create_table(
        "posts",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("author_id", sa.Integer(), nullable=False),
        sa.Column("kind", sa.String(length=20), nullable=False, server_default="post"),
        sa.Column("parent_id", sa.Integer(), nullable=True),
        sa.Column("title", sa.String(length=200), nullable=True),
        sa.Column("body", sa.Text(), nullable=False),
        sa.Column("county", sa.String(length=50), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="published"),
        sa.Column("community_flag_weight", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["author_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["parent_id"], ["posts.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_posts_author_id"), "posts", ["author_id"], unique=False)
    op.create_index(op.f("ix_posts_parent_id"), "posts", ["parent_id"], unique=False)
    op.create_index(op.f("ix_posts_status"), "posts", ["status"], unique=False)
    op.create_index(op.f("ix_posts_created_at"), "posts", ["created_at"], unique=False)

    op.create_table(
        "moderation_flags",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("post_id", sa.Integer(), nullable=True),
        sa.Column("author_id", sa.Integer(), nullable=False),
        sa.Column("source", sa.String(length=20), nullable=False),
        sa.Column("reason", sa.String(length=64), nullable=False),
        sa.Column("reasons", sa.JSON(), nullable=True),
        sa.Column("severity", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("content_excerpt", sa.String(length=280), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("trust_delta", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("flagged_by_user_id", sa.Integer(), nullable=True),
        sa.Column("resolved_by_staff_id", sa.Integer(), nullable=True),
        sa.Column("resolved_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["post_id"], ["posts.id"]),
        sa.ForeignKeyConstraint(["author_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["flagged_by_user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["resolved_by_staff_id"], ["staff_users.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_moderation_flags_post_id"), "moderation_flags", ["post_id"], unique=False)
    op.create_index(op.f("ix_moderation_flags_author_id"), "moderation_flags", ["author_id"], unique=False)
    op.create_index(op.f("ix_moderation_flags_source"), "moderation_flags", ["source"], unique=False)
    op.create_index(op.f("ix_moderation_flags_status"), "moderation_flags", ["status"], unique=False)
    op.create_index(
        op.f("ix_moderation_flags_flagged_by_user_id"), "moderation_flags", ["flagged_by_user_id"], unique=False
    )
    op.create_index(op.f("ix_moderation_flags_created_at"), "moderation_flags", ["created_at"], unique=False)

    op.create_table(
        "staff_audit_logs",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("actor_staff_id", sa.Integer(), nullable=True),
        sa.Column("action", sa.String(length=64), nullable=False),
        sa.Column("target_ref", sa.String(length=255), nullable=True),
        sa.Column("meta_json", sa.JSON(), nullable=True),
        sa.Column("ip", sa.String(length=64), nullable=True),
        sa.Column("user_agent", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["actor_staff_id"], ["staff_users.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_staff_audit_logs_actor_staff_id"), "staff_audit_logs", ["actor_staff_id"], unique=False)
    op.create_index(op.f("ix_staff_audit_logs_action"), "staff_audit_logs", ["action"], unique=False)
    op.create_index(op.f("ix_staff_audit_logs_created_at"), "staff_audit_logs", ["created_at"], unique=False)

    op.create_table(
        "politicians",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("party", sa.String(length=120), nullable=False),
        sa.Column("position", sa.String(length=120), nullable=False),
        sa.Column("county", sa.String(length=50), nullable=True),
        sa.Column("is_deleted", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_politicians_name"), "politicians", ["name"], unique=False)


def downgrade() -> None:
    op.drop_index(op.f("ix_politicians_name"), table_name="politicians")
    op.drop_table("politicians")
    op.drop_index(op.f("ix_staff_audit_logs_created_at"), table_name="staff_audit_logs")
    op.drop_index(op.f("ix_staff_audit_logs_action"), table_name="staff_audit_logs")
    op.drop_index(op.f("ix_staff_audit_logs_actor_staff_id"), table_name="staff_audit_logs")
    op.drop_table("staff_audit_logs")
    op.drop_index(op.f("ix_moderation_flags_created_at"), table_name="moderation_flags")
    op.drop_index(op.f("ix_moderation_flags_flagged_by_user_id"), table_name="moderation_flags")
    op.drop_index(op.f("ix_moderation_flags_status"), table_name="moderation_flags")
    op.drop_index(op.f("ix_moderation_flags_source"), table_name="moderation_flags")
    op.drop_index(op.f("ix_moderation_flags_author_id"), table_name="moderation_flags")
    op.drop_index(op.f("ix_moderation_flags_post_id"), table_name="moderation_flags")
    op.drop_table("moderation_flags")
    op.drop_index(op.f("ix_posts_created_at"), table_name="posts")
    op.drop_index(op.f("ix_posts_status"), table_name="posts")
    op.drop_index(op.f("ix_posts_parent_id"), table_name="posts")
    op.drop_index(op.f("ix_posts_author_id"), table_name="posts")
    op.drop_table("posts")
    op.drop_index(op.f("ix_trust_score_events_created_at"), table_name="trust_score_events")
    op.drop_index(op.f("ix_trust_score_events_cause"), table_name="trust_score_events")
    op.drop_index(op.f("ix_trust_score_events_user_id"), table_name="trust_score_events")
    op.drop_table("trust_score_events")
    op.drop_table("global_logout_marker")
    op.drop_index(op.f("ix_staff_users_created_at"), table_name="staff_users")
    op.drop_index(op.f("ix_staff_users_email"), table_name="staff_users")
    op.drop_table("staff_users")
    op.drop_index(op.f("ix_users_created_at"), table_name="users")
    op.drop_index(op.f("ix_users_standing"), table_name="users")
    op.drop_index(op.f("ix_users_uuid"), table_name="users")
    op.drop_table("users")
