from dataclasses import asdict
from datetime import date, datetime
import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from dental_billing.clinic_database import Voucher, VoucherAssignment, VoucherUsage, get_db
from dental_billing.dependencies import get_api_key, get_directory, get_operator
from dental_billing.model import (VoucherAssignmentInput, VoucherCreate, VoucherUpdate, VoucherUseRequest,
                                  VoucherValidationRequest)
from dental_billing.rule_loader import get_voucher_rules
from dental_billing.services.directory_services import DirectoryClient
from dental_billing.services.voucher_engine import (build_status_views, compute_voucher_reminders,
                                                    compute_voucher_stats, compute_voucher_status, summarize_statuses)
from dental_billing.services.voucher_store import (RedemptionConflict, RedemptionDetails, VoucherRejected,
                                                   redeem_voucher, validate_voucher_code)

router = APIRouter(tags=["Vouchers"])
logger = logging.getLogger(__name__)


def _voucher_dict(voucher: Voucher, now: datetime = None) -> dict:
    status, status_text = compute_voucher_status(voucher, voucher.usages, now or datetime.utcnow())
    return {
        "id": voucher.id,
        "code": voucher.code,
        "title": voucher.title,
        "is_active": voucher.is_active,
        "discount_type": voucher.discount_type,
        "discount_value": str(voucher.discount_value),
        "max_discount": voucher.max_discount,
        "min_amount": voucher.min_amount,
        "min_purchase": voucher.min_purchase,
        "expiry_date": voucher.expiry_date,
        "usage_limit": voucher.usage_limit,
        "current_usage": voucher.current_usage,
        "status": status.value,
        "status_text": status_text,
        "created_at": voucher.created_at,
        "updated_at": voucher.updated_at,
    }


def _usage_dict(usage: VoucherUsage) -> dict:
    return {
        "id": usage.id,
        "voucher_id": usage.voucher_id,
        "voucher_code": usage.voucher_code,
        "patient_id": usage.patient_id,
        "patient_name": usage.patient_name,
        "original_treatment_amount": usage.original_treatment_amount,
        "admin_fee": usage.admin_fee,
        "discount_amount": usage.discount_amount,
        "discounted_treatment_amount": usage.discounted_treatment_amount,
        "final_total_amount": usage.final_total_amount,
        "used_date": usage.used_date,
        "used_by": usage.used_by,
        "transaction_type": usage.transaction_type,
        "transaction_id": usage.transaction_id,
    }


@router.post("/vouchers", status_code=201)
def create_voucher(payload: VoucherCreate, db: Session = Depends(get_db), api_key: str = Depends(get_api_key)):
    data = payload.model_dump()
    data["discount_type"] = payload.discount_type.value
    voucher = Voucher(**data, current_usage=0, version=0)
    db.add(voucher)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise HTTPException(status_code=409, detail=f"Voucher code {payload.code} already exists")
    db.refresh(voucher)
    logger.info("Voucher %s created", voucher.code)
    return _voucher_dict(voucher)


@router.get("/vouchers")
def list_vouchers(db: Session = Depends(get_db), api_key: str = Depends(get_api_key)):
    vouchers = db.query(Voucher).order_by(Voucher.created_at.desc(), Voucher.id.desc()).all()
    now = datetime.utcnow()
    return {"count": len(vouchers), "vouchers": [_voucher_dict(v, now) for v in vouchers]}


@router.post("/vouchers/validate")
def validate_voucher_endpoint(
    payload: VoucherValidationRequest,
    db: Session = Depends(get_db),
    api_key: str = Depends(get_api_key),
):
    result = validate_voucher_code(db, payload.code, payload.treatment_amount, payload.admin_fee, payload.patient_id)
    return asdict(result)


@router.post("/vouchers/use", status_code=201)
def use_voucher(
    payload: VoucherUseRequest,
    db: Session = Depends(get_db),
    operator: str = Depends(get_operator),
    api_key: str = Depends(get_api_key),
):
    details = RedemptionDetails(
        treatment_amount=payload.treatment_amount,
        admin_fee=payload.admin_fee,
        patient_id=payload.patient_id,
        patient_name=payload.patient_name,
        used_by=operator,
        transaction_type=payload.transaction_type,
        transaction_id=payload.transaction_id,
    )
    try:
        usage = redeem_voucher(db, payload.voucher_id, details)
    except VoucherRejected as e:
        raise HTTPException(status_code=400, detail={"reason": e.result.reason.value, "message": e.result.message})
    except RedemptionConflict as e:
        raise HTTPException(status_code=409, detail=str(e))
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to record voucher usage, please retry: {str(e)}")

    return {
        "message": "Voucher usage recorded",
        "usage": _usage_dict(usage),
    }


@router.get("/vouchers/usage")
def voucher_usage_history(db: Session = Depends(get_db), api_key: str = Depends(get_api_key)):
    usages = db.query(VoucherUsage).order_by(VoucherUsage.used_date.desc(), VoucherUsage.id.desc()).all()
    return {"count": len(usages), "usages": [_usage_dict(u) for u in usages]}


@router.get("/vouchers/stats")
def voucher_stats(db: Session = Depends(get_db), api_key: str = Depends(get_api_key)):
    stats = compute_voucher_stats(
        db.query(Voucher).all(),
        db.query(VoucherUsage).all(),
        recent_count=get_voucher_rules()["recent_usage_count"],
    )
    stats["recent_usages"] = [_usage_dict(u) for u in stats["recent_usages"]]
    return {"stats": stats}


@router.get("/vouchers/status")
def voucher_status(db: Session = Depends(get_db), api_key: str = Depends(get_api_key)):
    now = datetime.utcnow()
    views = build_status_views(
        db.query(Voucher).all(),
        db.query(VoucherUsage).all(),
        db.query(VoucherAssignment).all(),
        now,
    )
    vouchers = []
    for view in views:
        item = _voucher_dict(view["voucher"], now)
        item["status"] = view["status"]
        item["status_text"] = view["status_text"]
        item["current_usage"] = view["current_usage"]
        item["recipients"] = view["recipients"]
        item["usages"] = [_usage_dict(u) for u in view["usages"]]
        vouchers.append(item)

    return {
        "count": len(vouchers),
        "vouchers": vouchers,
        "summary": summarize_statuses(views),
    }


@router.get("/vouchers/reminders")
def voucher_reminders(db: Session = Depends(get_db), api_key: str = Depends(get_api_key)):
    rules = get_voucher_rules()
    reminders = compute_voucher_reminders(
        db.query(Voucher).all(),
        db.query(VoucherAssignment).all(),
        db.query(VoucherUsage).all(),
        datetime.utcnow(),
        window_days=rules["reminder_window_days"],
        urgent_days=rules["urgent_days"],
    )
    for reminder in reminders:
        reminder["discount_value"] = str(reminder["discount_value"])
    return {"count": len(reminders), "reminders": reminders}


@router.get("/vouchers/{voucher_id}")
def get_voucher(voucher_id: int, db: Session = Depends(get_db), api_key: str = Depends(get_api_key)):
    voucher = db.get(Voucher, voucher_id)
    if not voucher:
        raise HTTPException(status_code=404, detail="Voucher not found")
    return _voucher_dict(voucher)


@router.put("/vouchers/{voucher_id}")
def update_voucher(voucher_id: int, payload: VoucherUpdate, db: Session = Depends(get_db),
                   api_key: str = Depends(get_api_key)):
    voucher = db.get(Voucher, voucher_id)
    if not voucher:
        raise HTTPException(status_code=404, detail="Voucher not found")

    changes = payload.model_dump(exclude_unset=True)
    if "discount_type" in changes:
        changes["discount_type"] = changes["discount_type"].value
    for key, value in changes.items():
        setattr(voucher, key, value)
    if voucher.discount_type == "percentage" and voucher.discount_value > 100:
        db.rollback()
        raise HTTPException(status_code=422, detail="percentage vouchers cannot exceed 100%")
    voucher.updated_at = datetime.utcnow()
    # in-flight redemptions compare against the version they read
    voucher.version = voucher.version + 1
    db.commit()
    db.refresh(voucher)
    return _voucher_dict(voucher)


@router.post("/vouchers/{voucher_id}/assignments", status_code=201)
async def assign_voucher(
    voucher_id: int,
    payload: VoucherAssignmentInput,
    db: Session = Depends(get_db),
    directory: DirectoryClient = Depends(get_directory),
    api_key: str = Depends(get_api_key),
):
    voucher = db.get(Voucher, voucher_id)
    if not voucher:
        raise HTTPException(status_code=404, detail="Voucher not found")

    patient = await directory.get_patient(payload.patient_id)
    if not patient:
        raise HTTPException(status_code=404, detail="Patient not found in directory")

    assignment = VoucherAssignment(
        voucher_id=voucher.id,
        patient_id=patient.id,
        patient_name=patient.name,
        assigned_date=payload.assigned_date or date.today(),
    )
    db.add(assignment)
    db.commit()
    db.refresh(assignment)
    return {
        "id": assignment.id,
        "voucher_id": assignment.voucher_id,
        "patient_id": assignment.patient_id,
        "patient_name": assignment.patient_name,
        "assigned_date": assignment.assigned_date,
    }
