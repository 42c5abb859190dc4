from dataclasses import dataclass
from datetime import datetime
from typing import Optional
import logging

from sqlalchemy import func, update
from sqlalchemy.orm import Session

from dental_billing.clinic_database import Voucher, VoucherUsage
from dental_billing.model import TransactionType
from dental_billing.services.voucher_engine import ValidationResult, normalize_code, validate_voucher

logger = logging.getLogger(__name__)


class VoucherRejected(Exception):
    def __init__(self, result: ValidationResult):
        super().__init__(result.message)
        self.result = result


class RedemptionConflict(Exception):
    pass


@dataclass
class RedemptionDetails:
    treatment_amount: int
    admin_fee: int = 0
    patient_id: Optional[str] = None
    patient_name: Optional[str] = None
    used_by: Optional[str] = None
    transaction_type: TransactionType = TransactionType.treatment
    transaction_id: Optional[str] = None


def find_voucher_by_code(db: Session, code: str) -> Optional[Voucher]:
    return db.query(Voucher).filter(Voucher.code == normalize_code(code)).first()


def count_usages(db: Session, voucher_id: int) -> int:
    return db.query(func.count(VoucherUsage.id)).filter(VoucherUsage.voucher_id == voucher_id).scalar() or 0


def find_usage_for_transaction(db: Session, voucher_code: str, transaction_id: str) -> Optional[VoucherUsage]:
    return (
        db.query(VoucherUsage)
        .filter(
            VoucherUsage.voucher_code == normalize_code(voucher_code),
            VoucherUsage.transaction_type == TransactionType.treatment.value,
            VoucherUsage.transaction_id == transaction_id,
        )
        .order_by(VoucherUsage.id.asc())
        .first()
    )


def validate_voucher_code(
    db: Session,
    code: str,
    treatment_amount: int,
    admin_fee: int = 0,
    patient_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> ValidationResult:
    """Preview only: nothing is written, so repeated calls give the same answer."""
    voucher = find_voucher_by_code(db, code)
    usage_count = count_usages(db, voucher.id) if voucher is not None else 0
    result = validate_voucher(voucher, usage_count, treatment_amount, admin_fee, now or datetime.utcnow())
    if not result.valid:
        logger.warning("Voucher %s rejected for patient %s: %s", normalize_code(code), patient_id, result.reason.value)
    return result


def redeem_voucher(
    db: Session,
    voucher_id: Optional[int],
    details: RedemptionDetails,
    now: Optional[datetime] = None,
    commit: bool = True,
) -> VoucherUsage:
    """
    Record one redemption and bump the voucher counter in one transaction.

    The voucher is validated again inside the transaction. The counter is
    incremented with a compare-and-swap on the voucher version (and on the
    usage limit), so two concurrent redemptions cannot both succeed on the
    last remaining use. With commit=False the caller owns the transaction.
    """
    now = now or datetime.utcnow()
    voucher = db.get(Voucher, voucher_id) if voucher_id is not None else None
    usage_count = count_usages(db, voucher.id) if voucher is not None else 0

    result = validate_voucher(voucher, usage_count, details.treatment_amount, details.admin_fee, now)
    if not result.valid:
        raise VoucherRejected(result)

    stmt = (
        update(Voucher)
        .where(Voucher.id == voucher.id, Voucher.version == voucher.version)
        .values(current_usage=Voucher.current_usage + 1, version=Voucher.version + 1, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if voucher.usage_limit:
        stmt = stmt.where(Voucher.current_usage < voucher.usage_limit)

    code = voucher.code
    if db.execute(stmt).rowcount != 1:
        db.rollback()
        logger.warning("Concurrent redemption detected for voucher %s", code)
        raise RedemptionConflict(f"Voucher {code} was redeemed concurrently, please retry")

    usage = VoucherUsage(
        voucher_id=voucher.id,
        voucher_code=code,
        patient_id=details.patient_id,
        patient_name=details.patient_name or "Unknown",
        original_treatment_amount=result.treatment_amount,
        admin_fee=result.admin_fee,
        discount_amount=result.discount_amount,
        discounted_treatment_amount=result.discounted_treatment_amount,
        final_total_amount=result.final_total_amount,
        used_date=now,
        used_by=details.used_by,
        transaction_type=TransactionType(details.transaction_type).value,
        transaction_id=details.transaction_id,
    )
    db.add(usage)

    if commit:
        try:
            db.commit()
        except Exception:
            db.rollback()
            logger.error("Failed to record redemption of voucher %s", code)
            raise
        db.refresh(usage)
    else:
        db.flush()

    # counter was updated outside the identity map
    db.expire(voucher)
    logger.info("Voucher %s redeemed, discount %s", code, result.discount_amount)
    return usage
