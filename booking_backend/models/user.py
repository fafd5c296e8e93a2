"""User model definitions."""

from sqlalchemy import Column, Integer, String
from booking_backend.database import Base

PROVIDER_ROLE = 'provider'
CLIENT_ROLE = 'client'
ADMIN_ROLE = 'admin'


class User(Base):
    """Represents an application user."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True)
    hashed_password = Column(String)
    full_name = Column(String)
    role = Column(String)  # provider/client/admin
