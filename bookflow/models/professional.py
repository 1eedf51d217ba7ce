from sqlalchemy import Column, String, Integer, Boolean, DateTime, JSON, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from bookflow.models.base import Base


class Professional(Base):
    __tablename__ = "professionals"

    id = Column(Integer, primary_key=True, autoincrement=True)
    company_id = Column(Integer, ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)

    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=True)
    phone = Column(String(20), nullable=True)
    specialties = Column(JSON, default=list)

    # 0=Sunday .. 6=Saturday
    work_days = Column(JSON, default=lambda: [1, 2, 3, 4, 5])
    work_start_time = Column(String(5), default="09:00")  # HH:MM format
    work_end_time = Column(String(5), default="18:00")  # HH:MM format

    active = Column(Boolean, default=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    company = relationship("Company")

    def __repr__(self):
        return f"<Professional(id={self.id}, name={self.name})>"

    def to_dict(self):
        return {
            "id": self.id,
            "company_id": self.company_id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "specialties": self.specialties or [],
            "work_days": self.work_days,
            "work_start_time": self.work_start_time,
            "work_end_time": self.work_end_time,
            "active": self.active,
        }
