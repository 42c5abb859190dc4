from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from typing import List, Optional
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum


class DiscountMode(str, Enum):
    percentage = "percentage"
    fixed = "fixed"


class Shift(str, Enum):
    morning = "09:00-15:00"
    evening = "18:00-20:00"


class PaymentStatus(str, Enum):
    paid = "paid"
    down_payment = "down_payment"


class TransactionType(str, Enum):
    treatment = "treatment"
    sale = "sale"


class ProductCategory(str, Enum):
    treatment = "treatment"
    lab = "lab"
    consultation = "consultation"
    medication = "medication"


def _normalize_discount_mode(v):
    if isinstance(v, str):
        v = v.lower().strip()
        # older clients send "nominal" for a fixed rupiah discount
        if v == "nominal":
            return DiscountMode.fixed.value
    return v


def _to_naive_utc(v):
    if isinstance(v, datetime) and v.tzinfo is not None:
        return v.astimezone(timezone.utc).replace(tzinfo=None)
    return v


# ---------------------------------------------------------------- treatments

class TreatmentLineItem(BaseModel):
    id: str
    name: str
    unit_price: int = Field(..., ge=0, description="Price in whole rupiah")
    discount_mode: DiscountMode = DiscountMode.percentage
    discount_input: Decimal = Field(Decimal("0"), description="0-100 for percentage, rupiah for fixed")

    @field_validator("discount_mode", mode="before")
    def normalize_discount_mode(cls, v):
        return _normalize_discount_mode(v)

    @field_validator("name")
    def normalize_name(cls, v):
        return v.strip()


class MedicationLineItem(BaseModel):
    id: str
    name: str
    unit_price: int = Field(..., ge=0)
    quantity: int = Field(1, ge=1)


class EncounterPricingInput(BaseModel):
    doctor_id: Optional[str] = None
    treatment_items: List[TreatmentLineItem] = Field(..., min_length=1)
    medication_items: List[MedicationLineItem] = Field(default_factory=list)
    fee_percentage: Optional[Decimal] = Field(
        None, ge=0, le=100, description="Leave empty to use the matching fee setting"
    )
    admin_fee_override: Optional[int] = Field(None, ge=0)
    payment_status: PaymentStatus = PaymentStatus.paid
    down_payment_amount: int = Field(0, ge=0)
    voucher_code: Optional[str] = None

    @field_validator("payment_status", mode="before")
    def normalize_payment_status(cls, v):
        if isinstance(v, str):
            v = v.lower().strip()
            return {"lunas": "paid", "dp": "down_payment"}.get(v, v)
        return v

    @field_validator("voucher_code")
    def normalize_voucher_code(cls, v):
        if isinstance(v, str):
            v = v.upper().strip()
            return v or None
        return v


class EncounterInput(EncounterPricingInput):
    patient_id: str
    doctor_id: str
    date: date
    shift: Shift
    notes: Optional[str] = None


class EncounterUpdate(EncounterInput):
    # edits never redeem a new voucher
    voucher_code: Optional[str] = Field(None, exclude=True)


# ---------------------------------------------------------------- fees

class SittingFeeInput(BaseModel):
    doctor_id: str
    doctor_name: Optional[str] = None
    shift: Shift
    date: date
    amount: int = Field(..., ge=0)


class FeeSettingInput(BaseModel):
    doctor_ids: List[str] = Field(default_factory=list, description="Empty means every doctor")
    treatment_names: List[str] = Field(default_factory=list, description="Empty means every treatment")
    fee_percentage: Decimal = Field(..., gt=0, le=100)
    is_default: bool = False
    description: Optional[str] = None


# ---------------------------------------------------------------- vouchers

class VoucherCreate(BaseModel):
    code: str = Field(..., min_length=1)
    title: Optional[str] = None
    is_active: bool = True
    discount_type: DiscountMode
    discount_value: Decimal = Field(..., ge=0)
    max_discount: Optional[int] = Field(None, ge=0, description="Cap for percentage vouchers")
    min_amount: Optional[int] = Field(None, ge=0)
    min_purchase: Optional[int] = Field(None, ge=0)
    expiry_date: Optional[datetime] = None
    usage_limit: Optional[int] = Field(None, ge=1)

    @field_validator("code")
    def normalize_code(cls, v):
        return v.upper().strip()

    @field_validator("discount_type", mode="before")
    def normalize_discount_type(cls, v):
        return _normalize_discount_mode(v)

    @field_validator("expiry_date")
    def normalize_expiry(cls, v):
        return _to_naive_utc(v)

    @model_validator(mode="after")
    def check_percentage_range(self):
        if self.discount_type == DiscountMode.percentage and self.discount_value > 100:
            raise ValueError("percentage vouchers cannot exceed 100%")
        return self


class VoucherUpdate(BaseModel):
    title: Optional[str] = None
    is_active: Optional[bool] = None
    discount_type: Optional[DiscountMode] = None
    discount_value: Optional[Decimal] = Field(None, ge=0)
    max_discount: Optional[int] = Field(None, ge=0)
    min_amount: Optional[int] = Field(None, ge=0)
    min_purchase: Optional[int] = Field(None, ge=0)
    expiry_date: Optional[datetime] = None
    usage_limit: Optional[int] = Field(None, ge=1)

    @field_validator("discount_type", mode="before")
    def normalize_discount_type(cls, v):
        return _normalize_discount_mode(v)

    @field_validator("is_active", "discount_type", "discount_value")
    def reject_null(cls, v):
        # omit the field to keep the stored value
        if v is None:
            raise ValueError("may be omitted but not null")
        return v

    @field_validator("expiry_date")
    def normalize_expiry(cls, v):
        return _to_naive_utc(v)


class VoucherValidationRequest(BaseModel):
    code: str
    treatment_amount: int = Field(..., ge=0, description="Treatment value, admin fee excluded")
    admin_fee: int = Field(0, ge=0)
    patient_id: Optional[str] = None
    transaction_type: TransactionType = TransactionType.treatment


class VoucherUseRequest(BaseModel):
    voucher_id: int
    patient_id: Optional[str] = None
    patient_name: Optional[str] = None
    treatment_amount: int = Field(..., ge=0)
    admin_fee: int = Field(0, ge=0)
    transaction_type: TransactionType = TransactionType.treatment
    transaction_id: Optional[str] = None


class VoucherAssignmentInput(BaseModel):
    patient_id: str
    assigned_date: Optional[date] = None


# ---------------------------------------------------------------- directory

class PatientRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    name: str
    medical_record_number: Optional[str] = Field(None, alias="medicalRecordNumber")


class DoctorRecord(BaseModel):
    id: str
    name: str
    specialization: Optional[str] = None


class ProductRecord(BaseModel):
    id: str
    name: str
    price: int = Field(..., ge=0)
    category: str
    stock: Optional[int] = None

    @field_validator("category")
    def normalize_category(cls, v):
        return v.lower().strip()
