"""Appointment model, the resource metered by appointments_per_month."""

import uuid

from sqlalchemy import Column, DateTime, String, Text

from genbook.database.base import Base, TenantScopedMixin, TimestampMixin


class Appointment(Base, TimestampMixin, TenantScopedMixin):
    __tablename__ = "appointments"

    id = Column(String(255), primary_key=True, default=lambda: str(uuid.uuid4()))
    title = Column(String(255), nullable=False)
    starts_at = Column(DateTime(timezone=True), nullable=False)
    notes = Column(Text, nullable=True)
    created_by = Column(String(255), nullable=True)
