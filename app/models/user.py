"""
User Model

Only the columns the deployment core reads. Account management (signup,
login, OAuth) owns the rest of this table.
"""

from sqlalchemy import Column, String, Text, DateTime, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import declarative_base
import uuid

Base = declarative_base()


class UserRecord(Base):
    """Users table (subset)."""
    __tablename__ = "users"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    email = Column(String(255), nullable=False, unique=True)
    username = Column(String(64), nullable=False, unique=True)
    github_access_token = Column(Text, nullable=True)  # CredentialVault blob, never plaintext
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def __repr__(self):
        return f"<UserRecord {self.username}>"
