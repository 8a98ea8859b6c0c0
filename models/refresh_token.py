"""
RefreshToken model: one row per issued refresh token so tokens can be rotated and revoked
Fields:
- id (primary key) - the token identifier, equal to the JWT ``jti``
- user_id (String(36)) - FK to users.id
- issued_at, expires_at (naive UTC)
- revoked (bool) - only ever flips False -> True
"""
from sqlalchemy import Column, String, Boolean, DateTime, ForeignKey, Index
from sqlalchemy.orm import relationship

from models.base_model import BaseModel, Base, utcnow


class RefreshToken(BaseModel, Base):
    __tablename__ = "refresh_tokens"
    __table_args__ = (
        Index("ix_refresh_tokens_user_active", "user_id", "revoked"),
    )

    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    issued_at = Column(DateTime, nullable=False, default=utcnow)
    expires_at = Column(DateTime, nullable=False)
    revoked = Column(Boolean, default=False, nullable=False)

    user = relationship("User", back_populates="refresh_tokens")

    def __repr__(self):
        return f"<RefreshToken {self.id} user={self.user_id} revoked={self.revoked}>"
