from dataclasses import asdict
from datetime import date, datetime
from typing import Optional
import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from dental_billing.clinic_database import FeeSetting, SittingFee, TreatmentEncounter, get_db
from dental_billing.dependencies import get_api_key
from dental_billing.model import FeeSettingInput, SittingFeeInput
from dental_billing.rule_loader import get_shift_options
from dental_billing.services.fee_reconciler import build_fee_ledger, summarize_ledger, summarize_ledger_by_doctor

router = APIRouter(tags=["Doctor Fees"])
logger = logging.getLogger(__name__)


def _sitting_fee_dict(fee: SittingFee) -> dict:
    return {
        "id": fee.id,
        "doctor_id": fee.doctor_id,
        "doctor_name": fee.doctor_name,
        "shift": fee.shift,
        "date": fee.date,
        "amount": fee.amount,
        "created_at": fee.created_at,
        "updated_at": fee.updated_at,
    }


def _fee_setting_dict(setting: FeeSetting) -> dict:
    return {
        "id": setting.id,
        "doctor_ids": setting.doctor_ids,
        "treatment_names": setting.treatment_names,
        "fee_percentage": str(setting.fee_percentage),
        "is_default": setting.is_default,
        "description": setting.description,
        "created_at": setting.created_at,
    }


@router.get("/shifts")
def list_shifts(api_key: str = Depends(get_api_key)):
    return {"shifts": get_shift_options()}


# ---------------------------------------------------------------- sitting fees

@router.get("/sitting-fees")
def list_sitting_fees(
    doctor_id: Optional[str] = None,
    db: Session = Depends(get_db),
    api_key: str = Depends(get_api_key),
):
    query = db.query(SittingFee)
    if doctor_id:
        query = query.filter(SittingFee.doctor_id == doctor_id)
    fees = query.order_by(SittingFee.date.desc(), SittingFee.doctor_id).all()
    return {"count": len(fees), "sitting_fees": [_sitting_fee_dict(f) for f in fees]}


@router.post("/sitting-fees", status_code=201)
def create_sitting_fee(payload: SittingFeeInput, db: Session = Depends(get_db), api_key: str = Depends(get_api_key)):
    fee = SittingFee(
        doctor_id=payload.doctor_id,
        doctor_name=payload.doctor_name,
        shift=payload.shift.value,
        date=payload.date,
        amount=payload.amount,
    )
    db.add(fee)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise HTTPException(status_code=409, detail="A sitting fee already exists for this doctor, shift and date")
    db.refresh(fee)
    return _sitting_fee_dict(fee)


@router.put("/sitting-fees/{fee_id}")
def update_sitting_fee(fee_id: int, payload: SittingFeeInput, db: Session = Depends(get_db),
                       api_key: str = Depends(get_api_key)):
    fee = db.get(SittingFee, fee_id)
    if not fee:
        raise HTTPException(status_code=404, detail="Sitting fee not found")

    fee.doctor_id = payload.doctor_id
    fee.doctor_name = payload.doctor_name
    fee.shift = payload.shift.value
    fee.date = payload.date
    fee.amount = payload.amount
    fee.updated_at = datetime.utcnow()
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise HTTPException(status_code=409, detail="A sitting fee already exists for this doctor, shift and date")
    db.refresh(fee)
    return _sitting_fee_dict(fee)


@router.delete("/sitting-fees/{fee_id}")
def delete_sitting_fee(fee_id: int, db: Session = Depends(get_db), api_key: str = Depends(get_api_key)):
    fee = db.get(SittingFee, fee_id)
    if not fee:
        raise HTTPException(status_code=404, detail="Sitting fee not found")
    db.delete(fee)
    db.commit()
    return {"message": "Sitting fee deleted", "id": fee_id}


# ---------------------------------------------------------------- fee settings

@router.get("/fee-settings")
def list_fee_settings(db: Session = Depends(get_db), api_key: str = Depends(get_api_key)):
    settings = db.query(FeeSetting).order_by(FeeSetting.id.asc()).all()
    return {"count": len(settings), "fee_settings": [_fee_setting_dict(s) for s in settings]}


@router.post("/fee-settings", status_code=201)
def create_fee_setting(payload: FeeSettingInput, db: Session = Depends(get_db), api_key: str = Depends(get_api_key)):
    setting = FeeSetting(**payload.model_dump())
    db.add(setting)
    db.commit()
    db.refresh(setting)
    logger.info("Fee setting %s created: %s%%", setting.id, setting.fee_percentage)
    return _fee_setting_dict(setting)


@router.put("/fee-settings/{setting_id}")
def update_fee_setting(setting_id: int, payload: FeeSettingInput, db: Session = Depends(get_db),
                       api_key: str = Depends(get_api_key)):
    setting = db.get(FeeSetting, setting_id)
    if not setting:
        raise HTTPException(status_code=404, detail="Fee setting not found")
    for key, value in payload.model_dump().items():
        setattr(setting, key, value)
    db.commit()
    db.refresh(setting)
    return _fee_setting_dict(setting)


@router.delete("/fee-settings/{setting_id}")
def delete_fee_setting(setting_id: int, db: Session = Depends(get_db), api_key: str = Depends(get_api_key)):
    setting = db.get(FeeSetting, setting_id)
    if not setting:
        raise HTTPException(status_code=404, detail="Fee setting not found")
    db.delete(setting)
    db.commit()
    return {"message": "Fee setting deleted", "id": setting_id}


# ---------------------------------------------------------------- reconciliation

@router.get("/doctor-fees")
def doctor_fee_report(
    start: Optional[date] = Query(None),
    end: Optional[date] = Query(None),
    doctor_id: Optional[str] = None,
    db: Session = Depends(get_db),
    api_key: str = Depends(get_api_key),
):
    if start and end and start > end:
        raise HTTPException(status_code=400, detail="start must not be after end")

    # always recomputed from the stored inputs
    encounters = db.query(TreatmentEncounter)
    sitting_fees = db.query(SittingFee)
    if start:
        encounters = encounters.filter(TreatmentEncounter.date >= start)
        sitting_fees = sitting_fees.filter(SittingFee.date >= start)
    if end:
        encounters = encounters.filter(TreatmentEncounter.date <= end)
        sitting_fees = sitting_fees.filter(SittingFee.date <= end)
    if doctor_id:
        encounters = encounters.filter(TreatmentEncounter.doctor_id == doctor_id)
        sitting_fees = sitting_fees.filter(SittingFee.doctor_id == doctor_id)

    entries = build_fee_ledger(encounters.all(), sitting_fees.all(), start=start, end=end, doctor_id=doctor_id)
    doctors = summarize_ledger_by_doctor(entries)
    return {
        "entries": [asdict(e) for e in entries],
        "doctors": [
            {
                "doctor_id": d.doctor_id,
                "doctor_name": d.doctor_name,
                "total_sessions": d.total_sessions,
                "total_computed_fee": d.total_computed_fee,
                "total_sitting_top_up": d.total_sitting_top_up,
                "total_payable_fee": d.total_payable_fee,
            }
            for d in doctors
        ],
        "summary": summarize_ledger(entries),
    }
