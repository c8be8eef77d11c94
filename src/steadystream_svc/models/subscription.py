import uuid
import datetime

from sqlalchemy import Boolean, Column, DateTime, Float, Integer, String
from steadystream_svc.models.base import Base


class Subscription(Base):
    """
    IPTV subscription record. Rows are created after a successful payment and
    carry the MegaOTT line credentials once the line has been provisioned.
    """
    __tablename__ = 'subscriptions'

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, index=True, nullable=True)
    stripe_subscription_id = Column(String, unique=True, nullable=True)
    status = Column(String, nullable=True)
    active = Column(Boolean, default=False, nullable=False)

    plan_id = Column(String, nullable=True)
    plan_name = Column(String, nullable=True)
    plan_price = Column(Float, nullable=True)
    customer_email = Column(String, nullable=True)
    customer_name = Column(String, nullable=True)
    payment_id = Column(String, nullable=True)
    payment_method = Column(String, nullable=True)
    payment_status = Column(String, nullable=True)

    megaott_subscription_id = Column(String, nullable=True)
    subscription_type = Column(String, nullable=True)
    package_id = Column(Integer, nullable=True)
    package_name = Column(String, nullable=True)
    template_id = Column(Integer, nullable=True)
    template_name = Column(String, nullable=True)
    max_connections = Column(Integer, nullable=True)
    forced_country = Column(String, nullable=True)
    adult_content = Column(Boolean, default=False)
    enable_vpn = Column(Boolean, default=False)
    paid = Column(Boolean, default=False)
    iptv_username = Column(String, nullable=True)
    iptv_password = Column(String, nullable=True)
    mac_address = Column(String, nullable=True)
    m3u_url = Column(String, nullable=True)
    dns_link = Column(String, nullable=True)
    dns_link_samsung_lg = Column(String, nullable=True)
    portal_link = Column(String, nullable=True)
    note = Column(String, nullable=True)
    whatsapp_telegram = Column(String, nullable=True)

    expiring_at = Column(String, nullable=True)
    start_date = Column(DateTime, nullable=True)
    end_date = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.datetime.utcnow, nullable=False)

    def __repr__(self) -> str:
        return f"<Subscription(id={self.id}, user_id={self.user_id}, status={self.status})>"
