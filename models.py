from sqlalchemy import Column, Integer, Boolean, Float, Date, DateTime, ForeignKey, Text, Index, UniqueConstraint, JSON, Uuid
from sqlalchemy.orm import relationship
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.sql import func
from core.database import Base
import uuid

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


class User(Base):
    """Owner of provider connections and every ingested metric."""
    __tablename__ = "app_user"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    email = Column(Text, unique=True, nullable=True)
    display_name = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    connections = relationship("ProviderConnection", back_populates="user")


class ProviderConnection(Base):
    """
    Link between a user and an external data provider account.

    Webhooks identify users by the provider's own user id; lookups go through
    (external_user_id, provider, is_active). Tokens are stored Fernet-encrypted.

    Terra issues a separate user id per connected wearable, so one user can
    hold several TERRA rows, one per device_provider.
    """
    __tablename__ = "provider_connection"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("app_user.id"), nullable=False, index=True)
    provider = Column(Text, nullable=False)  # 'TERRA', 'WHOOP'
    external_user_id = Column(Text, nullable=False)
    # Underlying wearable, e.g. 'GARMIN' behind Terra; equals provider for direct connections
    device_provider = Column(Text, nullable=False)
    access_token = Column(Text, nullable=True)  # encrypted
    refresh_token = Column(Text, nullable=True)  # encrypted
    token_expires_at = Column(DateTime(timezone=True), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    last_sync_date = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    user = relationship("User", back_populates="connections")

    __table_args__ = (
        UniqueConstraint("user_id", "provider", "device_provider", name="uq_provider_connection_user_provider_device"),
        Index("ix_provider_connection_lookup", "external_user_id", "provider", "is_active"),
    )


class UnifiedMetric(Base):
    """
    Canonical metric record.

    One row per (user, metric, day, source). Redelivery overwrites the row in
    place; reconciliation across sources happens at read time.
    """
    __tablename__ = "unified_metric"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("app_user.id"), nullable=False, index=True)
    metric_name = Column(Text, nullable=False)
    value = Column(Float, nullable=False)
    unit = Column(Text, nullable=True)
    metric_category = Column(Text, nullable=False)  # recovery | sleep | activity | body_composition | health
    source = Column(Text, nullable=False)  # upper-case provider, e.g. 'WHOOP', 'WITHINGS'
    measurement_date = Column(Date, nullable=False)
    external_id = Column(Text, nullable=True)
    priority = Column(Integer, nullable=False)
    confidence_score = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint(
            "user_id", "metric_name", "measurement_date", "source",
            name="uq_unified_metric_user_metric_date_source",
        ),
        Index("ix_unified_metric_user_date", "user_id", "measurement_date"),
    )


class Workout(Base):
    """Workout sessions reported by providers. Deduplicated by (user_id, external_id)."""
    __tablename__ = "workout"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("app_user.id"), nullable=False, index=True)
    external_id = Column(Text, nullable=False)
    source = Column(Text, nullable=False)
    workout_type = Column(Text, nullable=False, default="Activity")
    start_time = Column(DateTime(timezone=True), nullable=True)
    end_time = Column(DateTime(timezone=True), nullable=True)
    duration_minutes = Column(Integer, nullable=True)
    calories = Column(Float, nullable=True)
    average_heart_rate = Column(Float, nullable=True)
    max_heart_rate = Column(Float, nullable=True)
    strain = Column(Float, nullable=True)
    distance_meters = Column(Float, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "external_id", name="uq_workout_user_external_id"),
    )


class WebhookEvent(Base):
    """
    Journal of verified inbound webhook payloads.

    Failed deliveries are picked up again by the retry task with exponential
    backoff until they succeed or run out of attempts.
    """
    __tablename__ = "webhook_event"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    provider = Column(Text, nullable=False)  # 'TERRA', 'WHOOP'
    event_type = Column(Text, nullable=True)
    external_user_id = Column(Text, nullable=True)
    delivery_id = Column(Text, nullable=True)  # sha256 of the raw request body
    payload = Column(JSONType, nullable=False)
    # received | processed | ignored | user_not_found | failed | failed_permanently
    status = Column(Text, nullable=False, default="received")
    attempts = Column(Integer, nullable=False, default=0)
    processed_count = Column(Integer, nullable=False, default=0)
    last_error = Column(Text, nullable=True)
    next_retry_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    __table_args__ = (
        Index("ix_webhook_event_status_retry", "status", "next_retry_at"),
    )
