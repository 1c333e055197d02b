"""Raw inbound gateway events, recorded before any business logic runs."""

from sqlalchemy import Column, DateTime, Integer, JSON, String, Text

from courtside.db.session import Base
from courtside.models.enums import WebhookEventStatus
from courtside.utils.timeutils import utc_now


class WebhookEvent(Base):
    __tablename__ = "webhook_events"

    id = Column(Integer, primary_key=True, index=True)

    # Dedup key: gateway event id when supplied, else event type + entity id
    idempotency_key = Column(String(255), nullable=False, unique=True)
    event_type = Column(String(100), nullable=False, index=True)
    gateway_event_id = Column(String(255), nullable=True)

    raw_body = Column(Text, nullable=False)
    payload = Column(JSON, nullable=True)

    status = Column(String(20), nullable=False, default=WebhookEventStatus.RECEIVED.value)
    outcome = Column(Text, nullable=True)

    related_entity_type = Column(String(50), nullable=True)
    related_entity_id = Column(Integer, nullable=True)

    retry_count = Column(Integer, nullable=False, default=0)
    received_at = Column(DateTime, default=utc_now, nullable=False)
    last_retry_at = Column(DateTime, nullable=True)
    processed_at = Column(DateTime, nullable=True)
