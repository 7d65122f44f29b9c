"""Alert model - log of attempted notifications."""
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey
from sqlalchemy.orm import relationship

from ..database import Base
from ..utils.clock import utcnow


class Alert(Base):
    """Record of a downtime alert or recovery notice sent via email or webhook."""

    __tablename__ = "alerts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    site_id = Column(Integer, ForeignKey("sites.id", ondelete="CASCADE"), nullable=False)
    alert_type = Column(String, nullable=False)  # downtime, recovery
    channel = Column(String, default="email")  # email, webhook
    sent_at = Column(DateTime, default=utcnow)
    payload = Column(String, nullable=True)  # JSON summary of what was sent
    success = Column(Integer, nullable=True)  # 1=success, 0=failed

    # Relationship
    site = relationship("Site", back_populates="alerts")
