# FILE: pharmapos/models/pharmacy.py
from __future__ import annotations

from datetime import datetime
from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey
from sqlalchemy.orm import relationship

from pharmapos.db.base import Base


class Pharmacy(Base):
    __tablename__ = "pharmacies"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    settings = relationship("PharmacySettings", back_populates="pharmacy", uselist=False)
    users = relationship("User", back_populates="pharmacy")


class PharmacySettings(Base):
    """
    Per-pharmacy alert knobs. Read at evaluation time, never cached.
    """
    __tablename__ = "pharmacy_settings"

    id = Column(Integer, primary_key=True)
    pharmacy_id = Column(Integer, ForeignKey("pharmacies.id"), unique=True, nullable=False, index=True)

    low_stock_threshold = Column(Integer, nullable=False, default=10)
    expiry_alert_days = Column(Integer, nullable=False, default=30)
    notify_by_email = Column(Boolean, nullable=False, default=False)
    notify_by_dashboard = Column(Boolean, nullable=False, default=True)

    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    pharmacy = relationship("Pharmacy", back_populates="settings")


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    pharmacy_id = Column(Integer, ForeignKey("pharmacies.id"), nullable=False, index=True)
    username = Column(String(100), nullable=False)
    email = Column(String(255), nullable=True)
    email_verified = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    pharmacy = relationship("Pharmacy", back_populates="users")
