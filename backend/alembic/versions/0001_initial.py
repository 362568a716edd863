"""organizers, events and event photos

Revision ID: 0001_initial
Revises:
Create Date: 2025-06-01 00:00:00
"""

from alembic import op
import sqlalchemy as sa


revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None

UUID_TYPE = sa.Uuid(as_uuid=True)


def upgrade() -> None:
    op.create_table(
        "organizers",
        sa.Column("organizer_id", UUID_TYPE, primary_key=True),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("password_hash", sa.String(length=255), nullable=False),
        sa.Column("display_name", sa.String(length=120), nullable=True),
        sa.Column("avatar_url", sa.String(length=500), nullable=True),
        sa.Column("is_active", sa.Boolean(), server_default=sa.true(), nullable=True),
        sa.Column("deletion_requested_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("password_changed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_organizers_email", "organizers", ["email"], unique=True)

    op.create_table(
        "organizer_sessions",
        sa.Column("session_id", UUID_TYPE, primary_key=True),
        sa.Column(
            "organizer_id",
            UUID_TYPE,
            sa.ForeignKey("organizers.organizer_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("revoked_reason", sa.String(length=64), nullable=True),
    )
    op.create_index("ix_organizer_sessions_organizer", "organizer_sessions", ["organizer_id"])

    op.create_table(
        "events",
        sa.Column("id", UUID_TYPE, primary_key=True),
        sa.Column("organizer_id", UUID_TYPE, sa.ForeignKey("organizers.organizer_id"), nullable=False),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("location", sa.String(length=255), nullable=True),
        sa.Column("event_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("max_photos", sa.Integer(), server_default=sa.text("100"), nullable=False),
        sa.Column("is_active", sa.Boolean(), server_default=sa.true(), nullable=False),
        sa.Column("qr_code_data", sa.String(length=500), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint(
            "max_photos >= 1 AND max_photos <= 1000", name="ck_events_max_photos_range"
        ),
    )
    op.create_index("ix_events_organizer_created", "events", ["organizer_id", "created_at"])

    op.create_table(
        "event_photos",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("event_id", UUID_TYPE, sa.ForeignKey("events.id"), nullable=False),
        sa.Column("file_name", sa.String(length=255), nullable=False),
        sa.Column("file_path", sa.String(length=512), nullable=False, unique=True),
        sa.Column("file_size", sa.Integer(), nullable=False),
        sa.Column("content_type", sa.String(length=100), nullable=False),
        sa.Column("is_approved", sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column("uploaded_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_event_photos_event_uploaded", "event_photos", ["event_id", "uploaded_at"])

    op.create_table(
        "event_photo_tombstones",
        sa.Column("tombstone_id", UUID_TYPE, primary_key=True),
        sa.Column("event_id", UUID_TYPE, nullable=False),
        sa.Column("photo_id", sa.String(length=36), nullable=False),
        sa.Column("storage_key", sa.String(length=512), nullable=False),
        sa.Column("attempts", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column("last_error", sa.String(length=255), nullable=True),
        sa.Column("last_attempt_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index(
        "ix_event_photo_tombstones_pending",
        "event_photo_tombstones",
        ["processed_at", "created_at"],
    )


def downgrade() -> None:
    op.drop_index("ix_event_photo_tombstones_pending", table_name="event_photo_tombstones")
    op.drop_table("event_photo_tombstones")
    op.drop_index("ix_event_photos_event_uploaded", table_name="event_photos")
    op.drop_table("event_photos")
    op.drop_index("ix_events_organizer_created", table_name="events")
    op.drop_table("events")
    op.drop_index("ix_organizer_sessions_organizer", table_name="organizer_sessions")
    op.drop_table("organizer_sessions")
    op.drop_index("ix_organizers_email", table_name="organizers")
    op.drop_table("organizers")
