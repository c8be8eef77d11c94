from sqlalchemy import Boolean, Column, DateTime, String
from steadystream_svc.models.base import Base


class Profile(Base):
    """
    Customer profile. The id is the auth user id handed out at sign-up.
    """
    __tablename__ = 'profiles'

    id = Column(String, primary_key=True)
    email = Column(String, nullable=True)
    name = Column(String, nullable=True)
    subscription_status = Column(String, nullable=True)
    subscription_tier = Column(String, nullable=True)
    trial_end_date = Column(DateTime, nullable=True)
    stripe_customer_id = Column(String, nullable=True)
    welcome_email_sent = Column(Boolean, default=False)
    welcome_email_sent_at = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, nullable=True)

    def __repr__(self) -> str:
        return f"<Profile(id={self.id}, status={self.subscription_status}, tier={self.subscription_tier})>"
