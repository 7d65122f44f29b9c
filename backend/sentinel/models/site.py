"""Site model - endpoints being monitored and their lifecycle state."""
from sqlalchemy import Boolean, Column, Integer, String, DateTime
from sqlalchemy.orm import relationship

from ..database import Base
from ..utils.clock import utcnow


class Site(Base):
    """A registered HTTP(S) endpoint."""

    __tablename__ = "sites"

    id = Column(Integer, primary_key=True, autoincrement=True)
    url = Column(String, nullable=False, unique=True)
    name = Column(String, nullable=False)
    notify_email = Column(String, nullable=False)
    status = Column(String, nullable=False, default="PENDING")  # PENDING, UP, DOWN
    consecutive_failures = Column(Integer, nullable=False, default=0)
    last_checked_at = Column(DateTime, nullable=True)
    next_check_at = Column(DateTime, nullable=False, index=True)
    downtime_deadline = Column(DateTime, nullable=True)  # set only while a DOWN incident accumulates
    suspended = Column(Boolean, nullable=False, default=False, index=True)
    notified_for_current_incident = Column(Boolean, nullable=False, default=False)
    checks_recorded = Column(Integer, nullable=False, default=0)  # lifetime count, survives history trimming
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    history = relationship(
        "CheckRecord",
        back_populates="site",
        order_by="CheckRecord.id",
        cascade="all, delete-orphan",
    )
    alerts = relationship("Alert", back_populates="site", cascade="all, delete-orphan")
