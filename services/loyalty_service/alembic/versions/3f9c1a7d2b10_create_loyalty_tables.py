"""create_loyalty_tables

Revision ID: 3f9c1a7d2b10
Revises:
Create Date: 2026-10-18 09:00:00.000000
"""

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "3f9c1a7d2b10"
down_revision = None
branch_labels = None
depends_on = None


program_status_enum = sa.Enum(
    "draft", "active", "paused", "archived", name="program_status_enum"
)
earn_mode_enum = sa.Enum("per_visit", "per_purchase", name="earn_mode_enum")
earn_source_enum = sa.Enum("qr_scan", "manual", name="earn_source_enum")
redemption_status_enum = sa.Enum("open", "redeemed", name="redemption_status_enum")
wallet_pass_status_enum = sa.Enum(
    "not_requested", "pending", "issued", "failed", name="wallet_pass_status_enum"
)
wallet_pass_job_type_enum = sa.Enum(
    "issue", "update", name="wallet_pass_job_type_enum"
)
wallet_pass_job_status_enum = sa.Enum(
    "pending", "succeeded", "failed", name="wallet_pass_job_status_enum"
)


def upgrade() -> None:
    op.create_table(
        "loyalty_programs",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("public_id", sa.String(length=32), nullable=False),
        sa.Column("business_id", sa.String(), nullable=False),
        sa.Column("program_name", sa.String(), nullable=True),
        sa.Column("reward_threshold", sa.Integer(), nullable=False),
        sa.Column("reward_description", sa.Text(), nullable=False),
        sa.Column("stamp_label", sa.String(), nullable=False),
        sa.Column("earn_mode", earn_mode_enum, nullable=False),
        sa.Column("max_earns_per_day", sa.Integer(), nullable=False),
        sa.Column("min_gap_minutes", sa.Integer(), nullable=False),
        sa.Column("earn_token", sa.String(length=64), nullable=False),
        sa.Column("previous_earn_token", sa.String(length=64), nullable=True),
        sa.Column("earn_token_rotated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("status", program_status_enum, nullable=False),
        sa.Column("wallet_pass_template_id", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "reward_threshold >= 1",
            name=op.f("ck_loyalty_programs_reward_threshold_positive"),
        ),
        sa.CheckConstraint(
            "max_earns_per_day >= 0",
            name=op.f("ck_loyalty_programs_max_earns_non_negative"),
        ),
        sa.CheckConstraint(
            "min_gap_minutes >= 0",
            name=op.f("ck_loyalty_programs_min_gap_non_negative"),
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_loyalty_programs")),
    )
    op.create_index(
        op.f("ix_loyalty_programs_public_id"),
        "loyalty_programs",
        ["public_id"],
        unique=True,
    )
    op.create_index(
        op.f("ix_loyalty_programs_business_id"),
        "loyalty_programs",
        ["business_id"],
    )

    op.create_table(
        "loyalty_memberships",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("program_id", sa.Uuid(), nullable=False),
        sa.Column("wallet_pass_id", sa.String(), nullable=False),
        sa.Column("stamps_balance", sa.Integer(), nullable=False),
        sa.Column("lifetime_stamps_earned", sa.Integer(), nullable=False),
        sa.Column("total_redeemed", sa.Integer(), nullable=False),
        sa.Column("last_earn_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("first_name", sa.String(), nullable=True),
        sa.Column("last_name", sa.String(), nullable=True),
        sa.Column("email", sa.String(), nullable=True),
        sa.Column("date_of_birth", sa.Date(), nullable=True),
        sa.Column("wallet_pass_status", wallet_pass_status_enum, nullable=False),
        sa.Column("wallet_pass_serial", sa.String(), nullable=True),
        sa.Column("apple_wallet_url", sa.Text(), nullable=True),
        sa.Column("google_wallet_url", sa.Text(), nullable=True),
        sa.Column("joined_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "stamps_balance >= 0",
            name=op.f("ck_loyalty_memberships_stamps_balance_non_negative"),
        ),
        sa.ForeignKeyConstraint(
            ["program_id"],
            ["loyalty_programs.id"],
            name=op.f("fk_loyalty_memberships_program_id_loyalty_programs"),
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_loyalty_memberships")),
        sa.UniqueConstraint(
            "program_id",
            "wallet_pass_id",
            name="uq_loyalty_memberships_program_wallet",
        ),
    )
    op.create_index(
        op.f("ix_loyalty_memberships_program_id"),
        "loyalty_memberships",
        ["program_id"],
    )
    op.create_index(
        op.f("ix_loyalty_memberships_wallet_pass_id"),
        "loyalty_memberships",
        ["wallet_pass_id"],
    )

    op.create_table(
        "loyalty_earn_events",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("membership_id", sa.Uuid(), nullable=False),
        sa.Column("program_id", sa.Uuid(), nullable=False),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("balance_after", sa.Integer(), nullable=False),
        sa.Column("reward_unlocked", sa.Boolean(), nullable=False),
        sa.Column("source", earn_source_enum, nullable=False),
        sa.Column("ip_hash", sa.String(length=64), nullable=True),
        sa.CheckConstraint(
            "balance_after >= 0",
            name=op.f("ck_loyalty_earn_events_balance_after_non_negative"),
        ),
        sa.ForeignKeyConstraint(
            ["membership_id"],
            ["loyalty_memberships.id"],
            name=op.f("fk_loyalty_earn_events_membership_id_loyalty_memberships"),
        ),
        sa.ForeignKeyConstraint(
            ["program_id"],
            ["loyalty_programs.id"],
            name=op.f("fk_loyalty_earn_events_program_id_loyalty_programs"),
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_loyalty_earn_events")),
    )
    op.create_index(
        op.f("ix_loyalty_earn_events_program_id"),
        "loyalty_earn_events",
        ["program_id"],
    )
    op.create_index(
        "ix_loyalty_earn_events_membership_occurred",
        "loyalty_earn_events",
        ["membership_id", "occurred_at"],
    )
    op.create_index(
        "ix_loyalty_earn_events_ip_hash_occurred",
        "loyalty_earn_events",
        ["ip_hash", "occurred_at"],
    )

    op.create_table(
        "loyalty_reward_redemptions",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("membership_id", sa.Uuid(), nullable=False),
        sa.Column("program_id", sa.Uuid(), nullable=False),
        sa.Column("earn_event_id", sa.Uuid(), nullable=True),
        sa.Column("status", redemption_status_enum, nullable=False),
        sa.Column("reward_description_snapshot", sa.Text(), nullable=False),
        sa.Column("unlocked_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("redeemed_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(
            ["membership_id"],
            ["loyalty_memberships.id"],
            name=op.f(
                "fk_loyalty_reward_redemptions_membership_id_loyalty_memberships"
            ),
        ),
        sa.ForeignKeyConstraint(
            ["program_id"],
            ["loyalty_programs.id"],
            name=op.f("fk_loyalty_reward_redemptions_program_id_loyalty_programs"),
        ),
        sa.ForeignKeyConstraint(
            ["earn_event_id"],
            ["loyalty_earn_events.id"],
            name=op.f(
                "fk_loyalty_reward_redemptions_earn_event_id_loyalty_earn_events"
            ),
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_loyalty_reward_redemptions")),
    )
    op.create_index(
        op.f("ix_loyalty_reward_redemptions_program_id"),
        "loyalty_reward_redemptions",
        ["program_id"],
    )
    op.create_index(
        "ix_loyalty_reward_redemptions_membership_unlocked",
        "loyalty_reward_redemptions",
        ["membership_id", "unlocked_at"],
    )

    op.create_table(
        "loyalty_wallet_pass_jobs",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("membership_id", sa.Uuid(), nullable=False),
        sa.Column("job_type", wallet_pass_job_type_enum, nullable=False),
        sa.Column("status", wallet_pass_job_status_enum, nullable=False),
        sa.Column(
            "payload",
            sa.JSON().with_variant(postgresql.JSONB(), "postgresql"),
            nullable=False,
        ),
        sa.Column("attempts", sa.Integer(), nullable=False),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("next_attempt_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(
            ["membership_id"],
            ["loyalty_memberships.id"],
            name=op.f("fk_loyalty_wallet_pass_jobs_membership_id_loyalty_memberships"),
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_loyalty_wallet_pass_jobs")),
    )
    op.create_index(
        op.f("ix_loyalty_wallet_pass_jobs_membership_id"),
        "loyalty_wallet_pass_jobs",
        ["membership_id"],
    )
    op.create_index(
        "ix_loyalty_wallet_pass_jobs_status_next",
        "loyalty_wallet_pass_jobs",
        ["status", "next_attempt_at"],
    )


def downgrade() -> None:
    op.drop_index(
        "ix_loyalty_wallet_pass_jobs_status_next",
        table_name="loyalty_wallet_pass_jobs",
    )
    op.drop_index(
        op.f("ix_loyalty_wallet_pass_jobs_membership_id"),
        table_name="loyalty_wallet_pass_jobs",
    )
    op.drop_table("loyalty_wallet_pass_jobs")
    op.drop_index(
        "ix_loyalty_reward_redemptions_membership_unlocked",
        table_name="loyalty_reward_redemptions",
    )
    op.drop_index(
        op.f("ix_loyalty_reward_redemptions_program_id"),
        table_name="loyalty_reward_redemptions",
    )
    op.drop_table("loyalty_reward_redemptions")
    op.drop_index(
        "ix_loyalty_earn_events_ip_hash_occurred",
        table_name="loyalty_earn_events",
    )
    op.drop_index(
        "ix_loyalty_earn_events_membership_occurred",
        table_name="loyalty_earn_events",
    )
    op.drop_index(
        op.f("ix_loyalty_earn_events_program_id"), table_name="loyalty_earn_events"
    )
    op.drop_table("loyalty_earn_events")
    op.drop_index(
        op.f("ix_loyalty_memberships_wallet_pass_id"),
        table_name="loyalty_memberships",
    )
    op.drop_index(
        op.f("ix_loyalty_memberships_program_id"), table_name="loyalty_memberships"
    )
    op.drop_table("loyalty_memberships")
    op.drop_index(
        op.f("ix_loyalty_programs_business_id"), table_name="loyalty_programs"
    )
    op.drop_index(op.f("ix_loyalty_programs_public_id"), table_name="loyalty_programs")
    op.drop_table("loyalty_programs")

    bind = op.get_bind()
    for enum_type in (
        wallet_pass_job_status_enum,
        wallet_pass_job_type_enum,
        wallet_pass_status_enum,
        redemption_status_enum,
        earn_source_enum,
        earn_mode_enum,
        program_status_enum,
    ):
        enum_type.drop(bind, checkfirst=True)
