"""
Customer Model - saved delivery details per session
"""
from sqlalchemy import Column, String

from app.db.database import Base


class CustomerRecord(Base):
    """Last customer details used for an order in a session"""

    __tablename__ = "customers"

    session_id = Column(String(200), primary_key=True)
    name = Column(String(200), nullable=False, default="")
    phone = Column(String(30), nullable=False, default="")
    address = Column(String(500), nullable=False, default="")
    district = Column(String(100), nullable=False, default="")
    upazila = Column(String(100), nullable=False, default="")
    email = Column(String(200), nullable=False, default="")
