"""CheckRecord model - bounded probe history for sites."""
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey
from sqlalchemy.orm import relationship

from ..database import Base


class CheckRecord(Base):
    """One probe result; at most HISTORY_CAP rows are kept per site."""

    __tablename__ = "check_records"

    id = Column(Integer, primary_key=True, autoincrement=True)
    site_id = Column(Integer, ForeignKey("sites.id", ondelete="CASCADE"), nullable=False, index=True)
    observed_at = Column(DateTime, nullable=False)
    status_code = Column(Integer, nullable=False)  # 0 = network/timeout/content failure
    duration_ms = Column(Integer, nullable=False)
    detail = Column(String, nullable=True)

    # Relationships
    site = relationship("Site", back_populates="history")
