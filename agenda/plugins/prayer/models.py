"""
SQLAlchemy models for prayer times: one row per (day, location, method), plus the single user location.
"""
from sqlalchemy import Column, String, Date, DateTime, Float, Integer, JSON, UniqueConstraint

from agenda.core.db import Base


class PrayerTimesRecord(Base):
    """One computed day. data is JSON: {prayer_name: "HH:MM"}. Never updated once written."""
    __tablename__ = "prayer_times_records"
    __table_args__ = (
        UniqueConstraint("prayer_date", "latitude", "longitude", "method", name="uq_prayer_times_key"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    prayer_date = Column(Date, nullable=False, index=True)
    latitude = Column(Float, nullable=False)  # rounded to LOCATION_PRECISION
    longitude = Column(Float, nullable=False)
    method = Column(String(32), nullable=False)  # CalculationMethod value
    fetched_at = Column(DateTime(timezone=False), nullable=False)
    data = Column(JSON, nullable=False)


class UserLocationRecord(Base):
    """The active user location. At most one row."""
    __tablename__ = "user_locations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    city = Column(String(255), nullable=True)
    country = Column(String(255), nullable=True)
    calculation_method = Column(String(32), nullable=False, default="KARACHI")
    updated_at = Column(DateTime(timezone=False), nullable=False)
