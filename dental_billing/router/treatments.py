from dataclasses import asdict
from datetime import date, datetime
from decimal import Decimal
from typing import Optional
import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.encoders import jsonable_encoder
from sqlalchemy.orm import Session

from dental_billing.clinic_database import FeeSetting, TreatmentEncounter, get_db
from dental_billing.dependencies import get_admin_fee, get_api_key, get_directory, get_operator
from dental_billing.model import EncounterInput, EncounterPricingInput, EncounterUpdate, ProductCategory
from dental_billing.services.directory_services import DirectoryClient
from dental_billing.services.pricing import EncounterTotals, aggregate_encounter_totals, suggest_fee_percentage
from dental_billing.services.voucher_store import (RedemptionConflict, RedemptionDetails, VoucherRejected,
                                                   find_usage_for_transaction, find_voucher_by_code, redeem_voucher,
                                                   validate_voucher_code)

router = APIRouter(tags=["Treatments"])
logger = logging.getLogger(__name__)

DECIMAL_AS_STR = {Decimal: str}


def _resolve_fee_percentage(db: Session, payload: EncounterPricingInput):
    if payload.fee_percentage is not None:
        return payload.fee_percentage, "manual"
    if payload.doctor_id:
        suggested = suggest_fee_percentage(
            payload.doctor_id,
            [item.name for item in payload.treatment_items],
            db.query(FeeSetting).order_by(FeeSetting.id.asc()).all(),
        )
        if suggested is not None:
            return suggested, "fee_setting"
    return Decimal("0"), "none"


def _totals(payload: EncounterPricingInput, fee_percentage, default_admin_fee: int, voucher_discount: int = 0) -> EncounterTotals:
    return aggregate_encounter_totals(
        payload.treatment_items,
        payload.medication_items,
        fee_percentage,
        payload.admin_fee_override,
        default_admin_fee,
        voucher_discount=voucher_discount,
        payment_status=payload.payment_status,
        down_payment_amount=payload.down_payment_amount,
    )


def _apply_totals(record: TreatmentEncounter, totals: EncounterTotals) -> None:
    record.treatment_items = jsonable_encoder([asdict(i) for i in totals.treatment_items], custom_encoder=DECIMAL_AS_STR)
    record.medication_items = jsonable_encoder([asdict(m) for m in totals.medication_items])
    record.fee_percentage = totals.fee_percentage
    record.down_payment_amount = totals.down_payment_amount
    record.subtotal = totals.subtotal
    record.total_discount = totals.total_discount
    record.net_treatment_total = totals.net_treatment_total
    record.voucher_discount = totals.voucher_discount
    record.medication_cost = totals.medication_cost
    record.admin_fee = totals.effective_admin_fee
    record.grand_total = totals.grand_total
    record.doctor_fee = totals.doctor_fee
    record.outstanding_amount = totals.outstanding_amount


def _serialize(record: TreatmentEncounter) -> dict:
    return {
        "id": record.id,
        "patient_id": record.patient_id,
        "patient_name": record.patient_name,
        "doctor_id": record.doctor_id,
        "doctor_name": record.doctor_name,
        "date": record.date,
        "shift": record.shift,
        "treatment_items": record.treatment_items,
        "medication_items": record.medication_items,
        "fee_percentage": str(record.fee_percentage),
        "admin_fee_override": record.admin_fee_override,
        "payment_status": record.payment_status,
        "down_payment_amount": record.down_payment_amount,
        "subtotal": record.subtotal,
        "total_discount": record.total_discount,
        "net_treatment_total": record.net_treatment_total,
        "voucher_code": record.voucher_code,
        "voucher_discount": record.voucher_discount,
        "medication_cost": record.medication_cost,
        "admin_fee": record.admin_fee,
        "grand_total": record.grand_total,
        "doctor_fee": record.doctor_fee,
        "outstanding_amount": record.outstanding_amount,
        "notes": record.notes,
        "created_by": record.created_by,
        "created_at": record.created_at,
        "updated_at": record.updated_at,
    }


async def _resolve_names(directory: DirectoryClient, patient_id: str, doctor_id: str):
    patient = await directory.get_patient(patient_id)
    if not patient:
        raise HTTPException(status_code=404, detail="Patient not found in directory")
    doctor = await directory.get_doctor(doctor_id)
    if not doctor:
        raise HTTPException(status_code=404, detail="Doctor not found in directory")
    return patient.name, doctor.name


def _redeemed_discount(db: Session, record: TreatmentEncounter) -> int:
    # the usage row holds the full redeemed amount; the column is clamped per edit
    if not record.voucher_code:
        return 0
    usage = find_usage_for_transaction(db, record.voucher_code, str(record.id))
    return usage.discount_amount if usage else record.voucher_discount


def _commit(db: Session, record: TreatmentEncounter, action: str):
    try:
        db.commit()
        db.refresh(record)
    except Exception as e:
        db.rollback()
        logger.error("Failed to %s treatment: %s", action, e)
        raise HTTPException(status_code=500, detail=f"Failed to {action} treatment, please retry: {str(e)}")


@router.post("/treatments/preview")
def preview_treatment(
    payload: EncounterPricingInput,
    db: Session = Depends(get_db),
    default_admin_fee: int = Depends(get_admin_fee),
    api_key: str = Depends(get_api_key),
):
    fee_percentage, source = _resolve_fee_percentage(db, payload)
    totals = _totals(payload, fee_percentage, default_admin_fee)

    voucher = None
    if payload.voucher_code:
        result = validate_voucher_code(db, payload.voucher_code, totals.net_treatment_total, totals.effective_admin_fee)
        voucher = asdict(result)
        if result.valid:
            totals = _totals(payload, fee_percentage, default_admin_fee, voucher_discount=result.discount_amount)

    return {
        "totals": totals,
        "fee_percentage_source": source,
        "voucher": voucher,
    }


@router.post("/treatments", status_code=201)
async def create_treatment(
    payload: EncounterInput,
    db: Session = Depends(get_db),
    directory: DirectoryClient = Depends(get_directory),
    default_admin_fee: int = Depends(get_admin_fee),
    operator: str = Depends(get_operator),
    api_key: str = Depends(get_api_key),
):
    patient_name, doctor_name = await _resolve_names(directory, payload.patient_id, payload.doctor_id)
    fee_percentage, _ = _resolve_fee_percentage(db, payload)
    totals = _totals(payload, fee_percentage, default_admin_fee)

    record = TreatmentEncounter(
        patient_id=payload.patient_id,
        patient_name=patient_name,
        doctor_id=payload.doctor_id,
        doctor_name=doctor_name,
        date=payload.date,
        shift=payload.shift.value,
        admin_fee_override=payload.admin_fee_override,
        payment_status=payload.payment_status.value,
        notes=payload.notes,
        created_by=operator,
    )
    _apply_totals(record, totals)
    db.add(record)
    db.flush()

    if payload.voucher_code:
        # redemption and encounter land in the same transaction
        voucher = find_voucher_by_code(db, payload.voucher_code)
        details = RedemptionDetails(
            treatment_amount=totals.net_treatment_total,
            admin_fee=totals.effective_admin_fee,
            patient_id=payload.patient_id,
            patient_name=patient_name,
            used_by=operator,
            transaction_id=str(record.id),
        )
        try:
            usage = redeem_voucher(db, voucher.id if voucher else None, details, commit=False)
        except VoucherRejected as e:
            db.rollback()
            raise HTTPException(status_code=400, detail={"reason": e.result.reason.value, "message": e.result.message})
        except RedemptionConflict as e:
            db.rollback()
            raise HTTPException(status_code=409, detail=str(e))

        record.voucher_code = usage.voucher_code
        _apply_totals(record, _totals(payload, fee_percentage, default_admin_fee, voucher_discount=usage.discount_amount))

    _commit(db, record, "save")
    logger.info("Treatment %s saved for patient %s, grand total %s", record.id, record.patient_id, record.grand_total)
    return _serialize(record)


@router.get("/treatments")
def list_treatments(
    doctor_id: Optional[str] = None,
    patient_id: Optional[str] = None,
    start: Optional[date] = Query(None),
    end: Optional[date] = Query(None),
    db: Session = Depends(get_db),
    api_key: str = Depends(get_api_key),
):
    query = db.query(TreatmentEncounter)
    if doctor_id:
        query = query.filter(TreatmentEncounter.doctor_id == doctor_id)
    if patient_id:
        query = query.filter(TreatmentEncounter.patient_id == patient_id)
    if start:
        query = query.filter(TreatmentEncounter.date >= start)
    if end:
        query = query.filter(TreatmentEncounter.date <= end)

    records = query.order_by(TreatmentEncounter.date.desc(), TreatmentEncounter.id.desc()).all()
    return {
        "count": len(records),
        "results": [_serialize(r) for r in records],
    }


@router.get("/treatments/{treatment_id}")
def get_treatment(treatment_id: int, db: Session = Depends(get_db), api_key: str = Depends(get_api_key)):
    record = db.get(TreatmentEncounter, treatment_id)
    if not record:
        raise HTTPException(status_code=404, detail="Treatment not found")
    return _serialize(record)


@router.put("/treatments/{treatment_id}")
async def update_treatment(
    treatment_id: int,
    payload: EncounterUpdate,
    db: Session = Depends(get_db),
    directory: DirectoryClient = Depends(get_directory),
    default_admin_fee: int = Depends(get_admin_fee),
    api_key: str = Depends(get_api_key),
):
    record = db.get(TreatmentEncounter, treatment_id)
    if not record:
        raise HTTPException(status_code=404, detail="Treatment not found")

    patient_name, doctor_name = await _resolve_names(directory, payload.patient_id, payload.doctor_id)
    fee_percentage, _ = _resolve_fee_percentage(db, payload)

    # full replace; a voucher redeemed at creation keeps its discount
    record.patient_id = payload.patient_id
    record.patient_name = patient_name
    record.doctor_id = payload.doctor_id
    record.doctor_name = doctor_name
    record.date = payload.date
    record.shift = payload.shift.value
    record.admin_fee_override = payload.admin_fee_override
    record.payment_status = payload.payment_status.value
    record.notes = payload.notes
    record.updated_at = datetime.utcnow()
    voucher_discount = _redeemed_discount(db, record)
    _apply_totals(record, _totals(payload, fee_percentage, default_admin_fee, voucher_discount=voucher_discount))

    _commit(db, record, "update")
    return _serialize(record)


@router.delete("/treatments/{treatment_id}")
def delete_treatment(treatment_id: int, db: Session = Depends(get_db), api_key: str = Depends(get_api_key)):
    record = db.get(TreatmentEncounter, treatment_id)
    if not record:
        raise HTTPException(status_code=404, detail="Treatment not found")
    db.delete(record)
    db.commit()
    return {"message": "Treatment deleted", "id": treatment_id}


@router.get("/products")
async def list_products(
    category: Optional[ProductCategory] = None,
    directory: DirectoryClient = Depends(get_directory),
    api_key: str = Depends(get_api_key),
):
    products = await directory.list_products(category.value if category else None)
    return {"count": len(products), "products": products}
