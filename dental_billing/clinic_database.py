from sqlalchemy import (create_engine, Boolean, Column, Integer, String, Date, ForeignKey, JSON, Numeric, Text,
                        UniqueConstraint)
from sqlalchemy.types import DateTime
from datetime import datetime
from sqlalchemy.orm import declarative_base, relationship, sessionmaker
import os

from dental_billing.config import get_database_url

Base = declarative_base()


class TreatmentEncounter(Base):
    __tablename__ = "treatment_encounters"

    id = Column(Integer, primary_key=True, autoincrement=True)
    patient_id = Column(String(50), nullable=False, index=True)
    patient_name = Column(String(100))
    doctor_id = Column(String(50), nullable=False, index=True)
    doctor_name = Column(String(100))
    date = Column(Date, nullable=False, index=True)
    shift = Column(String(20), nullable=False)
    treatment_items = Column(JSON, nullable=False)
    medication_items = Column(JSON, nullable=False, default=list)
    fee_percentage = Column(Numeric(5, 2), nullable=False, default=0)
    admin_fee_override = Column(Integer)
    payment_status = Column(String(20), nullable=False, default="paid")
    down_payment_amount = Column(Integer, nullable=False, default=0)
    subtotal = Column(Integer, nullable=False, default=0)
    total_discount = Column(Integer, nullable=False, default=0)
    net_treatment_total = Column(Integer, nullable=False, default=0)
    voucher_discount = Column(Integer, nullable=False, default=0)
    medication_cost = Column(Integer, nullable=False, default=0)
    admin_fee = Column(Integer, nullable=False, default=0)
    grand_total = Column(Integer, nullable=False, default=0)
    doctor_fee = Column(Integer, nullable=False, default=0)
    outstanding_amount = Column(Integer, nullable=False, default=0)
    voucher_code = Column(String(50))
    notes = Column(Text)
    created_by = Column(String(100))
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class SittingFee(Base):
    __tablename__ = "sitting_fees"
    __table_args__ = (UniqueConstraint("doctor_id", "shift", "date", name="uq_sitting_fee_doctor_shift_date"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    doctor_id = Column(String(50), nullable=False, index=True)
    doctor_name = Column(String(100))
    shift = Column(String(20), nullable=False)
    date = Column(Date, nullable=False)
    amount = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class FeeSetting(Base):
    __tablename__ = "fee_settings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    doctor_ids = Column(JSON, nullable=False, default=list)
    treatment_names = Column(JSON, nullable=False, default=list)
    fee_percentage = Column(Numeric(5, 2), nullable=False)
    is_default = Column(Boolean, nullable=False, default=False)
    description = Column(String(200))
    created_at = Column(DateTime, default=datetime.utcnow)


class Voucher(Base):
    __tablename__ = "vouchers"

    id = Column(Integer, primary_key=True, autoincrement=True)
    code = Column(String(50), unique=True, nullable=False)
    title = Column(String(150))
    is_active = Column(Boolean, nullable=False, default=True)
    discount_type = Column(String(20), nullable=False)
    discount_value = Column(Numeric(12, 2), nullable=False)
    max_discount = Column(Integer)
    min_amount = Column(Integer)
    min_purchase = Column(Integer)
    expiry_date = Column(DateTime)
    usage_limit = Column(Integer)
    current_usage = Column(Integer, nullable=False, default=0)
    # bumped on every redemption, compared before the counter is incremented
    version = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow)

    usages = relationship("VoucherUsage", back_populates="voucher")
    assignments = relationship("VoucherAssignment", cascade="all, delete-orphan", back_populates="voucher")


class VoucherUsage(Base):
    __tablename__ = "voucher_usages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    voucher_id = Column(Integer, ForeignKey("vouchers.id"), nullable=False, index=True)
    voucher_code = Column(String(50), nullable=False)
    patient_id = Column(String(50))
    patient_name = Column(String(100))
    original_treatment_amount = Column(Integer, nullable=False)
    admin_fee = Column(Integer, nullable=False, default=0)
    discount_amount = Column(Integer, nullable=False)
    discounted_treatment_amount = Column(Integer, nullable=False)
    final_total_amount = Column(Integer, nullable=False)
    used_date = Column(DateTime, default=datetime.utcnow)
    used_by = Column(String(100))
    transaction_type = Column(String(20), nullable=False, default="treatment")
    transaction_id = Column(String(50))

    voucher = relationship("Voucher", back_populates="usages")


class VoucherAssignment(Base):
    __tablename__ = "voucher_assignments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    voucher_id = Column(Integer, ForeignKey("vouchers.id", ondelete="CASCADE"), nullable=False, index=True)
    patient_id = Column(String(50), nullable=False)
    patient_name = Column(String(100))
    assigned_date = Column(Date)

    voucher = relationship("Voucher", back_populates="assignments")


#engine and sessions
DATABASE_URL = get_database_url()
connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}
engine = create_engine(DATABASE_URL, echo=os.getenv("SQL_ECHO") == "1", connect_args=connect_args)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


#to create tables
Base.metadata.create_all(engine)
