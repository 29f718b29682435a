# migrations/versions/0001_create_signwatch_tables.py
from alembic import op
import sqlalchemy as sa

# revision identifiers:
revision = "0001_create_signwatch"
down_revision = None
branch_labels = None
depends_on = None

_PK = sa.BigInteger().with_variant(sa.Integer(), "sqlite")
_TS = sa.DateTime(timezone=True)


def upgrade() -> None:
    op.create_table(
        "login_events",
        sa.Column("id", _PK, primary_key=True, autoincrement=True),
        sa.Column("external_id", sa.String(length=128), nullable=False, unique=True),
        sa.Column("user_id", sa.String(length=128), nullable=False),
        sa.Column("principal_name", sa.String(length=256), nullable=False),
        sa.Column("ip_address", sa.String(length=64), nullable=False),
        sa.Column("login_time", _TS, nullable=False),
        sa.Column("status", sa.Text(), nullable=False),
        sa.Column("country", sa.String(length=128), nullable=True),
        sa.Column("region", sa.String(length=128), nullable=True),
        sa.Column("city", sa.String(length=128), nullable=True),
        sa.Column("lat", sa.Float(), nullable=True),
        sa.Column("lon", sa.Float(), nullable=True),
        sa.Column("is_impossible_travel", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_region_change", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("travel_speed_kph", sa.Float(), nullable=True),
        sa.Column("compared_event_id", _PK, sa.ForeignKey("login_events.id", ondelete="SET NULL"), nullable=True),
        sa.Column(
            "region_compared_event_id", _PK, sa.ForeignKey("login_events.id", ondelete="SET NULL"), nullable=True
        ),
    )
    op.create_index("ix_login_events_user_time", "login_events", ["user_id", "login_time"])
    op.create_index("ix_login_events_time", "login_events", ["login_time"])

    op.create_table(
        "user_auth_devices",
        sa.Column("id", _PK, primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.String(length=128), nullable=False),
        sa.Column("device_id", sa.String(length=256), nullable=False),
        sa.Column("display_name", sa.String(length=256), nullable=False),
        sa.Column("device_type", sa.String(length=64), nullable=False),
        sa.UniqueConstraint("user_id", "device_id", name="uq_user_device"),
    )
    op.create_index("ix_user_auth_devices_user_id", "user_auth_devices", ["user_id"])

    op.create_table(
        "auth_device_changes",
        sa.Column("id", _PK, primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.String(length=128), nullable=False),
        sa.Column("principal_name", sa.String(length=256), nullable=False),
        sa.Column("device_display_name", sa.String(length=256), nullable=False),
        sa.Column("change_type", sa.String(length=16), nullable=False),
        sa.Column("change_time", _TS, nullable=False),
    )
    op.create_index("ix_auth_device_changes_user_id", "auth_device_changes", ["user_id"])

    op.create_table(
        "ip_whitelist",
        sa.Column("id", _PK, primary_key=True, autoincrement=True),
        sa.Column("ip_address", sa.String(length=64), nullable=False, unique=True),
        sa.Column("note", sa.Text(), nullable=True),
        sa.Column("created_at", _TS, server_default=sa.func.now(), nullable=False),
    )

    op.create_table(
        "email_alerts",
        sa.Column("id", _PK, primary_key=True, autoincrement=True),
        sa.Column(
            "subject_event_id", _PK, sa.ForeignKey("login_events.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("compared_event_id", _PK, sa.ForeignKey("login_events.id", ondelete="CASCADE"), nullable=True),
        sa.Column("alert_kind", sa.String(length=32), nullable=False),
        sa.Column("created_at", _TS, server_default=sa.func.now(), nullable=False),
        sa.Column("delivered", sa.Boolean(), nullable=True),
    )
    op.create_index("ix_email_alerts_subject_event_id", "email_alerts", ["subject_event_id"])

    op.create_table(
        "ip_geolocation_cache",
        sa.Column("ip_address", sa.String(length=64), primary_key=True),
        sa.Column("country", sa.String(length=128), nullable=True),
        sa.Column("region", sa.String(length=128), nullable=True),
        sa.Column("city", sa.String(length=128), nullable=True),
        sa.Column("lat", sa.Float(), nullable=True),
        sa.Column("lon", sa.Float(), nullable=True),
        sa.Column("isp", sa.String(length=256), nullable=True),
        sa.Column("last_updated", _TS, nullable=False),
    )


def downgrade() -> None:
    op.drop_table("ip_geolocation_cache")
    op.drop_index("ix_email_alerts_subject_event_id", table_name="email_alerts")
    op.drop_table("email_alerts")
    op.drop_table("ip_whitelist")
    op.drop_index("ix_auth_device_changes_user_id", table_name="auth_device_changes")
    op.drop_table("auth_device_changes")
    op.drop_index("ix_user_auth_devices_user_id", table_name="user_auth_devices")
    op.drop_table("user_auth_devices")
    op.drop_index("ix_login_events_time", table_name="login_events")
    op.drop_index("ix_login_events_user_time", table_name="login_events")
    op.drop_table("login_events")
