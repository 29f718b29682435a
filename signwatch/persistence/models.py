from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    BigInteger, Boolean, DateTime, Float, ForeignKey, Index, Integer, String, Text,
    UniqueConstraint, func,
)
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

from signwatch.persistence.db import Base

STATUS_SUCCESS = "Success"

# sqlite'ta BigInteger autoincrement çalışmıyor; PG'de bigint kalsın
_PK = BigInteger().with_variant(Integer(), "sqlite")


class UTCDateTime(TypeDecorator):
    """Always hands back aware UTC datetimes, whatever the backend stores."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        value = value.astimezone(timezone.utc)
        if dialect.name == "sqlite":
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


def format_status(succeeded: bool, failure_reason: Optional[str] = None) -> str:
    if succeeded:
        return STATUS_SUCCESS
    return "Failure: " + (failure_reason or "Unknown")


class LoginEvent(Base):
    __tablename__ = "login_events"

    id: Mapped[int] = mapped_column(_PK, primary_key=True, autoincrement=True)
    external_id: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    principal_name: Mapped[str] = mapped_column(String(256), nullable=False, default="")

    ip_address: Mapped[str] = mapped_column(String(64), nullable=False)
    login_time: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    status: Mapped[str] = mapped_column(Text, nullable=False, default=STATUS_SUCCESS)

    country: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    region: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    city: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    lat: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    lon: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    # yalnızca detection motoru yazar
    is_impossible_travel: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_region_change: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    travel_speed_kph: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    compared_event_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("login_events.id", ondelete="SET NULL"), nullable=True
    )
    region_compared_event_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("login_events.id", ondelete="SET NULL"), nullable=True
    )

    @property
    def succeeded(self) -> bool:
        return self.status == STATUS_SUCCESS

    def __repr__(self) -> str:
        return f"<LoginEvent id={self.id} user={self.user_id} ip={self.ip_address} at={self.login_time}>"


Index("ix_login_events_user_time", LoginEvent.user_id, LoginEvent.login_time)
Index("ix_login_events_time", LoginEvent.login_time)


class DeviceSnapshot(Base):
    __tablename__ = "user_auth_devices"
    __table_args__ = (UniqueConstraint("user_id", "device_id", name="uq_user_device"),)

    id: Mapped[int] = mapped_column(_PK, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    device_id: Mapped[str] = mapped_column(String(256), nullable=False)
    display_name: Mapped[str] = mapped_column(String(256), nullable=False)
    device_type: Mapped[str] = mapped_column(String(64), nullable=False)


class DeviceChangeEvent(Base):
    __tablename__ = "auth_device_changes"

    id: Mapped[int] = mapped_column(_PK, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    principal_name: Mapped[str] = mapped_column(String(256), nullable=False)
    device_display_name: Mapped[str] = mapped_column(String(256), nullable=False)
    change_type: Mapped[str] = mapped_column(String(16), nullable=False)  # added | removed
    change_time: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)


class WhitelistEntry(Base):
    __tablename__ = "ip_whitelist"

    id: Mapped[int] = mapped_column(_PK, primary_key=True, autoincrement=True)
    ip_address: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, server_default=func.now())


class NotificationLogEntry(Base):
    __tablename__ = "email_alerts"

    id: Mapped[int] = mapped_column(_PK, primary_key=True, autoincrement=True)
    subject_event_id: Mapped[int] = mapped_column(
        ForeignKey("login_events.id", ondelete="CASCADE"), nullable=False, index=True
    )
    compared_event_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("login_events.id", ondelete="CASCADE"), nullable=True
    )
    alert_kind: Mapped[str] = mapped_column(String(32), nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, server_default=func.now())
    # None: karar verildi, teslim sonucu henüz yazılmadı
    delivered: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)


class GeoCacheEntry(Base):
    __tablename__ = "ip_geolocation_cache"

    ip_address: Mapped[str] = mapped_column(String(64), primary_key=True)
    country: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    region: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    city: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    lat: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    lon: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    isp: Mapped[Optional[str]] = mapped_column(String(256), nullable=True)
    last_updated: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
