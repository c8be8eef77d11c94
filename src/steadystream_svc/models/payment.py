import uuid
import datetime

from sqlalchemy import Boolean, Column, DateTime, Float, Integer, JSON, String
from steadystream_svc.models.base import Base


class Payment(Base):
    """Card checkout attempt, one row per Stripe checkout session."""
    __tablename__ = 'payments'

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, index=True, nullable=False)
    plan_id = Column(String, nullable=False)
    amount = Column(Float, nullable=False)
    currency = Column(String, default='usd', nullable=False)
    status = Column(String, default='pending', nullable=False)
    provider = Column(String, nullable=False)
    provider_payment_id = Column(String, nullable=True)
    # "metadata" is reserved on declarative classes
    payment_metadata = Column('metadata', JSON, nullable=True)
    created_at = Column(DateTime, default=datetime.datetime.utcnow, nullable=False)

    def __repr__(self) -> str:
        return f"<Payment(id={self.id}, provider={self.provider}, status={self.status})>"


class NowPaymentsRecord(Base):
    """Crypto invoice created through NOWPayments, updated by IPN callbacks."""
    __tablename__ = 'nowpayments_records'

    payment_id = Column(String, primary_key=True)
    order_id = Column(String, index=True, nullable=True)
    user_id = Column(String, nullable=True)
    plan_id = Column(String, nullable=True)
    customer_email = Column(String, nullable=True)
    price_amount = Column(Float, nullable=True)
    price_currency = Column(String, nullable=True)
    pay_amount = Column(Float, nullable=True)
    pay_currency = Column(String, nullable=True)
    payment_status = Column(String, nullable=True)
    actually_paid = Column(Float, nullable=True)
    outcome_amount = Column(Float, nullable=True)
    outcome_currency = Column(String, nullable=True)
    invoice_url = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, nullable=True)

    def __repr__(self) -> str:
        return f"<NowPaymentsRecord(payment_id={self.payment_id}, status={self.payment_status})>"


class WebhookEvent(Base):
    """Processed webhook deliveries, used to drop duplicates."""
    __tablename__ = 'webhook_events'

    id = Column(Integer, primary_key=True, autoincrement=True)
    provider = Column(String, nullable=False)
    event_id = Column(String, index=True, nullable=False)
    payload = Column(JSON, nullable=True)
    status_code = Column(Integer, nullable=True)
    processed = Column(Boolean, default=False, nullable=False)
    processed_at = Column(DateTime, nullable=True)
