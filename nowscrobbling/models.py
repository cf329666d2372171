"""
Database models for the shared key-value store.
SQLAlchemy ORM model backing SqlStore
"""
from sqlalchemy import Column, Float, String, Text
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class KeyValueEntry(Base):
    """
    One stored key - cache entries, fallback copies, cooldown flags, ETags and metrics
    all live in this table, distinguished by key prefix.
    """
    __tablename__ = "kv_entries"

    key = Column(String(255), primary_key=True)
    value = Column(Text, nullable=False)  # JSON text
    expires_at = Column(Float, nullable=True, index=True)  # epoch seconds, NULL = persistent

    def __repr__(self):
        return f"<KeyValueEntry(key='{self.key}', expires_at={self.expires_at})>"
