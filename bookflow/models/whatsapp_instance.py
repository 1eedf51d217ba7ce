from sqlalchemy import Column, String, Integer, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from bookflow.models.base import Base


class WhatsAppInstance(Base):
    """Evolution API instance connected to a company number"""
    __tablename__ = "whatsapp_instances"

    id = Column(Integer, primary_key=True, autoincrement=True)
    company_id = Column(Integer, ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    instance_name = Column(String(255), nullable=False, unique=True)
    status = Column(String(50), default="disconnected")

    # Optional per-instance gateway credentials; fall back to the global ones
    api_url = Column(String(500), nullable=True)
    api_key = Column(String(500), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    company = relationship("Company")

    def __repr__(self):
        return f"<WhatsAppInstance(id={self.id}, name={self.instance_name})>"
