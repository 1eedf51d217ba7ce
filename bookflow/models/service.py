# bookflow/models/service.py
"""Bookable services; price and duration here are the source of truth"""
from sqlalchemy import Column, String, Numeric, Integer, ForeignKey, Boolean, DateTime, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from bookflow.models.base import Base


class Service(Base):
    """
    Bookable service offered by a company.
    Payment links always charge ``price`` from this row, never an amount read from chat.
    """
    __tablename__ = "services"

    id = Column(Integer, primary_key=True, autoincrement=True)
    company_id = Column(
        Integer,
        ForeignKey("companies.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    duration = Column(Integer, nullable=False)  # minutes
    price = Column(Numeric(10, 2), nullable=False)
    color = Column(String(7), default="#3b82f6")

    active = Column(Boolean, default=True, index=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now()
    )

    company = relationship("Company")

    def __repr__(self):
        return f"<Service(id={self.id}, name={self.name}, company_id={self.company_id})>"

    def to_dict(self):
        return {
            "id": self.id,
            "company_id": self.company_id,
            "name": self.name,
            "description": self.description,
            "duration": self.duration,
            "price": float(self.price) if self.price is not None else None,
            "formatted_price": self.formatted_price,
            "formatted_duration": self.formatted_duration,
            "active": self.active,
        }

    @property
    def formatted_price(self) -> str:
        """Brazilian format, e.g. R$ 1.234,56"""
        if self.price is None:
            return "Sob consulta"
        text = f"{self.price:,.2f}"
        return "R$ " + text.replace(",", "_").replace(".", ",").replace("_", ".")

    @property
    def formatted_duration(self) -> str:
        if not self.duration:
            return "Duração variável"

        hours = self.duration // 60
        minutes = self.duration % 60

        if hours > 0 and minutes > 0:
            return f"{hours}h {minutes}min"
        elif hours > 0:
            return f"{hours}h"
        else:
            return f"{minutes}min"
