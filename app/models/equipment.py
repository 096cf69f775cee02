"""
Equipment under service and its append-only status history.

Equipment.status is only ever written by the lifecycle service; every write
appends one EquipmentStatusHistory row in the same transaction.
"""
import enum
import uuid
from datetime import datetime

from sqlalchemy import Column, Integer, String, DateTime, Text, ForeignKey, Enum
from sqlalchemy.orm import relationship
from app.database import Base


class EquipmentType(str, enum.Enum):
    PC = "PC"
    LAPTOP = "LAPTOP"
    PRINTER = "PRINTER"
    PLOTTER = "PLOTTER"
    OTHER = "OTHER"


class EquipmentStatus(str, enum.Enum):
    RECEIVED = "RECEIVED"
    REPAIR = "REPAIR"
    REPAIRED = "REPAIRED"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"


class HistoryAction(str, enum.Enum):
    INTAKE = "intake"
    TRANSITION = "transition"
    REACTIVATION = "reactivation"


class Equipment(Base):
    """A device submitted for repair."""

    __tablename__ = "equipment"

    id = Column(String(36), primary_key=True, index=True, default=lambda: str(uuid.uuid4()))
    # <BUSINESS>-YYYYMMDD-NNNN
    code = Column(String(30), unique=True, nullable=False, index=True)
    type = Column(Enum(EquipmentType, native_enum=False, length=20), nullable=False)
    brand = Column(String(50))
    model = Column(String(50))
    serial_number = Column(String(100))
    reported_flaw = Column(Text, nullable=False)
    accessories = Column(String(300))
    service_type = Column(String(100))
    others = Column(Text)

    status = Column(
        Enum(EquipmentStatus, native_enum=False, length=20),
        nullable=False,
        default=EquipmentStatus.RECEIVED,
        index=True,
    )
    entry_date = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
    # Set iff status == DELIVERED
    delivery_date = Column(DateTime)

    customer_id = Column(Integer, ForeignKey("customers.id"), nullable=False, index=True)
    assigned_technician_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)

    # Optimistic lock for concurrent status transitions
    version = Column(Integer, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    customer = relationship("Customer", back_populates="equipment", lazy="joined")
    assigned_technician = relationship("User", lazy="joined")

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self):
        return f"<Equipment {self.code} - {self.status}>"

    @property
    def customer_name(self):
        return self.customer.name if self.customer else None

    @property
    def assigned_technician_name(self):
        return self.assigned_technician.name if self.assigned_technician else None


class EquipmentStatusHistory(Base):
    """Audit row appended for every committed status change. Never updated."""

    __tablename__ = "equipment_status_history"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    equipment_id = Column(
        String(36), ForeignKey("equipment.id", ondelete="CASCADE"), nullable=False, index=True
    )
    status = Column(Enum(EquipmentStatus, native_enum=False, length=20), nullable=False)
    action = Column(
        Enum(HistoryAction, native_enum=False, length=20, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=HistoryAction.TRANSITION,
    )
    observations = Column(Text)
    changed_by = Column(Integer, ForeignKey("users.id"), nullable=False)
    changed_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)

    def __repr__(self):
        return f"<EquipmentStatusHistory {self.equipment_id} -> {self.status}>"
