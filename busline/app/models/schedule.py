"""
Schedule database model.

A schedule is one concrete bus departure passengers book seats on. The
booking API owns these rows; tracking only reads them and flips the live flag.
"""

from sqlalchemy import Column, Integer, String, Boolean, ForeignKey, DateTime
from sqlalchemy.sql import func
from busline.app.db.session import Base


class Schedule(Base):
    """
    Schedule model.

    ``is_live`` is the driver's "Go Live" switch: whether passengers should
    expect bus positions on the tracking channel for this departure.
    """
    __tablename__ = "schedules"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Driver assignment
    driver_id = Column(Integer, ForeignKey('users.id'), nullable=True, index=True)

    route_name = Column(String(200), nullable=False)
    departure_time = Column(DateTime(timezone=True), nullable=False)

    # Live visibility
    is_live = Column(Boolean, default=False, nullable=False)
    live_updated_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<Schedule(id={self.id}, route='{self.route_name}', is_live={self.is_live})>"
