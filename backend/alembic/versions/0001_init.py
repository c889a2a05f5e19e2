"""init

Revision ID: 0001_init
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None


NOW = sa.text("(CURRENT_TIMESTAMP)")

INDEXES: dict[str, list[str]] = {
    "profiles": ["id", "email"],
    "subscriptions": ["id", "user_id", "plan", "status", "stripe_customer_id", "stripe_subscription_id"],
    "credit_balances": ["user_id"],
    "credit_transactions": ["id", "user_id", "type", "resource_type", "resource_id", "created_at"],
    "generation_jobs": ["id", "user_id", "kind", "mode", "provider", "status", "operation_handle", "parent_job_id", "created_at"],
    "worker_tasks": ["id", "kind", "status", "run_after"],
    "ai_usage_events": ["id", "user_id", "action", "created_at"],
    "custom_avatars": ["id", "user_id", "heygen_avatar_id"],
    "webhook_events": ["id", "provider", "event_type"],
    "voiceovers": ["id", "user_id", "video_id", "created_at"],
}


def _inspector():
    from sqlalchemy import inspect as sa_inspect
    return sa_inspect(op.get_bind())


def upgrade() -> None:
    # Alembic creates alembic_version with version_num VARCHAR(32) by default.
    if op.get_bind().dialect.name == "postgresql":
        op.execute(sa.text("ALTER TABLE alembic_version ALTER COLUMN version_num TYPE VARCHAR(64)"))

    inspector = _inspector()
    existing_tables = set(inspector.get_table_names())

    if "profiles" not in existing_tables:
        op.create_table(
            "profiles",
            sa.Column("id", sa.String(), primary_key=True),
            sa.Column("email", sa.String(), nullable=True),
            sa.Column("role", sa.String(), nullable=True),
            sa.Column("last_seen_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=NOW),
        )

    if "subscriptions" not in existing_tables:
        op.create_table(
            "subscriptions",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("user_id", sa.String(), nullable=True, unique=True),
            sa.Column("plan", sa.String(), nullable=True),
            sa.Column("status", sa.String(), nullable=True),
            sa.Column("billing_interval", sa.String(), nullable=True),
            sa.Column("current_period_end", sa.DateTime(timezone=True), nullable=True),
            sa.Column("cancel_at_period_end", sa.Boolean(), nullable=True),
            sa.Column("stripe_customer_id", sa.String(), nullable=True),
            sa.Column("stripe_subscription_id", sa.String(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=NOW),
            sa.Column("updated_at", sa.DateTime(timezone=True), server_default=NOW),
        )

    if "credit_balances" not in existing_tables:
        op.create_table(
            "credit_balances",
            sa.Column("user_id", sa.String(), primary_key=True),
            sa.Column("credits_remaining", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("credits_total", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("period_start", sa.DateTime(timezone=True), server_default=NOW),
            sa.Column("period_end", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), server_default=NOW),
            sa.CheckConstraint("credits_remaining >= 0", name="ck_credit_balances_non_negative"),
        )

    if "credit_transactions" not in existing_tables:
        op.create_table(
            "credit_transactions",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("user_id", sa.String(), nullable=False),
            sa.Column("amount", sa.Integer(), nullable=False),
            sa.Column("balance_after", sa.Integer(), nullable=False),
            sa.Column("type", sa.Enum("consumption", "refund", "grant", name="credittransactiontype"), nullable=False),
            sa.Column("resource_type", sa.String(), nullable=True),
            sa.Column("resource_id", sa.String(), nullable=True),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("idempotency_key", sa.String(), nullable=True, unique=True),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=NOW),
        )

    if "generation_jobs" not in existing_tables:
        op.create_table(
            "generation_jobs",
            sa.Column("id", sa.String(), primary_key=True),
            sa.Column("user_id", sa.String(), nullable=False),
            sa.Column("kind", sa.Enum("video", "image", "music", name="jobkind"), nullable=False),
            sa.Column("mode", sa.String(), nullable=True),
            sa.Column(
                "provider",
                sa.Enum("heygen", "google_veo", "nanobanana", "replicate", name="jobprovider"),
                nullable=False,
            ),
            sa.Column(
                "status",
                sa.Enum("pending", "processing", "completed", "failed", name="generationjobstatus"),
                nullable=False,
            ),
            sa.Column("title", sa.String(), nullable=True),
            sa.Column("prompt", sa.Text(), nullable=True),
            sa.Column("script", sa.Text(), nullable=True),
            sa.Column("model", sa.String(), nullable=True),
            sa.Column("params", sa.JSON(), nullable=True),
            sa.Column("operation_handle", sa.String(), nullable=True),
            sa.Column("credits_used", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("output_url", sa.Text(), nullable=True),
            sa.Column("output_urls", sa.JSON(), nullable=True),
            sa.Column("thumbnail_url", sa.Text(), nullable=True),
            sa.Column("duration_seconds", sa.Integer(), nullable=True),
            sa.Column("error_message", sa.Text(), nullable=True),
            sa.Column("refunded_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("persisted_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("parent_job_id", sa.String(), nullable=True),
            sa.Column("extend_count", sa.Integer(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=NOW),
            sa.Column("updated_at", sa.DateTime(timezone=True), server_default=NOW),
        )

    if "worker_tasks" not in existing_tables:
        op.create_table(
            "worker_tasks",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("kind", sa.String(), nullable=False),
            sa.Column("payload", sa.JSON(), nullable=True),
            sa.Column("status", sa.Enum("queued", "running", "done", "dead", name="workertaskstatus"), nullable=False),
            sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("max_attempts", sa.Integer(), nullable=False, server_default="5"),
            sa.Column("run_after", sa.DateTime(timezone=True), nullable=False),
            sa.Column("last_error", sa.Text(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=NOW),
            sa.Column("updated_at", sa.DateTime(timezone=True), server_default=NOW),
        )

    if "ai_usage_events" not in existing_tables:
        op.create_table(
            "ai_usage_events",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("user_id", sa.String(), nullable=False),
            sa.Column("action", sa.String(), nullable=False),
            sa.Column("input_summary", sa.Text(), nullable=True),
            sa.Column("output_summary", sa.Text(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=NOW),
        )

    if "custom_avatars" not in existing_tables:
        op.create_table(
            "custom_avatars",
            sa.Column("id", sa.String(), primary_key=True),
            sa.Column("user_id", sa.String(), nullable=False),
            sa.Column("name", sa.String(), nullable=False),
            sa.Column("heygen_avatar_id", sa.String(), nullable=False),
            sa.Column("photo_url", sa.String(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=NOW),
        )

    if "webhook_events" not in existing_tables:
        op.create_table(
            "webhook_events",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("provider", sa.String(), nullable=False),
            sa.Column("event_id", sa.String(), nullable=False, unique=True),
            sa.Column("event_type", sa.String(), nullable=True),
            sa.Column("received_at", sa.DateTime(timezone=True), server_default=NOW),
        )

    if "voiceovers" not in existing_tables:
        op.create_table(
            "voiceovers",
            sa.Column("id", sa.String(), primary_key=True),
            sa.Column("user_id", sa.String(), nullable=False),
            sa.Column("video_id", sa.String(), nullable=True),
            sa.Column("voice", sa.String(), nullable=False),
            sa.Column("script", sa.Text(), nullable=False),
            sa.Column("instructions", sa.Text(), nullable=True),
            sa.Column("speed", sa.Float(), nullable=False, server_default="1.0"),
            sa.Column("audio_url", sa.Text(), nullable=False),
            sa.Column("duration_seconds", sa.Integer(), nullable=True),
            sa.Column("credits_used", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=NOW),
        )

    inspector = _inspector()
    for table, columns in INDEXES.items():
        idxs = {idx["name"] for idx in inspector.get_indexes(table)}
        for column in columns:
            name = f"ix_{table}_{column}"
            if name not in idxs:
                op.create_index(name, table, [column])


def downgrade() -> None:
    for table in reversed(list(INDEXES)):
        for column in INDEXES[table]:
            op.drop_index(f"ix_{table}_{column}", table_name=table)
        op.drop_table(table)
