"""
Voucher rules: eligibility, discount, derived status, statistics and expiry
reminders. Everything here is a pure function over voucher, usage and
assignment objects; storage lives in voucher_store.
"""
import math
from collections import Counter
from dataclasses import dataclass
from datetime import date, datetime, time
from decimal import Decimal
from enum import Enum
from typing import Dict, Iterable, List, Optional, Tuple

from dental_billing.model import DiscountMode
from dental_billing.services.money import clamp, format_rupiah, percent_of, to_units


class RejectionReason(str, Enum):
    not_found = "not_found"
    expired = "expired"
    usage_limit_reached = "usage_limit_reached"
    below_minimum = "below_minimum"


class VoucherStatus(str, Enum):
    inactive = "inactive"
    used = "used"
    expired = "expired"
    used_up = "used_up"
    active = "active"


STATUS_TEXT = {
    VoucherStatus.inactive: "Inactive",
    VoucherStatus.used: "Used",
    VoucherStatus.expired: "Expired",
    VoucherStatus.used_up: "Usage limit reached",
    VoucherStatus.active: "Active",
}

VALID_MESSAGE = "Voucher is valid. The discount applies to the treatment amount only, not to the admin fee."


@dataclass(frozen=True)
class ValidationResult:
    valid: bool
    reason: Optional[RejectionReason]
    message: str
    treatment_amount: int
    admin_fee: int
    voucher_id: Optional[int] = None
    voucher_code: Optional[str] = None
    discount_type: Optional[str] = None
    discount_value: Optional[Decimal] = None
    discount_amount: int = 0
    discounted_treatment_amount: int = 0
    final_total_amount: int = 0


def normalize_code(code: str) -> str:
    return (code or "").strip().upper()


def _as_moment(value) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime.combine(value, time.min)
    return datetime.fromisoformat(str(value))


def is_expired(voucher, now: datetime) -> bool:
    expiry = _as_moment(voucher.expiry_date)
    return expiry is not None and now > expiry


def compute_voucher_discount(voucher, treatment_amount: int) -> int:
    """Discount on the treatment amount, never larger than that amount."""
    treatment_amount = max(0, int(treatment_amount))
    if DiscountMode(voucher.discount_type) == DiscountMode.percentage:
        discount = percent_of(treatment_amount, voucher.discount_value)
        if voucher.max_discount and discount > voucher.max_discount:
            discount = int(voucher.max_discount)
    else:
        discount = to_units(voucher.discount_value)
    return clamp(discount, 0, treatment_amount)


def _reject(reason: RejectionReason, message: str, treatment_amount: int, admin_fee: int, voucher=None) -> ValidationResult:
    return ValidationResult(
        valid=False,
        reason=reason,
        message=message,
        treatment_amount=treatment_amount,
        admin_fee=admin_fee,
        voucher_id=getattr(voucher, "id", None),
        voucher_code=getattr(voucher, "code", None),
    )


def validate_voucher(voucher, usage_count: int, treatment_amount: int, admin_fee: int, now: datetime) -> ValidationResult:
    """
    Read-only eligibility check and discount preview.

    Checks run in a fixed order: missing or inactive, expiry, usage limit,
    minimum spend. The minimum is compared with the treatment amount alone;
    the admin fee is neither counted towards it nor discounted.
    """
    treatment_amount = max(0, int(treatment_amount))
    admin_fee = max(0, int(admin_fee or 0))

    if voucher is None or not voucher.is_active:
        return _reject(RejectionReason.not_found, "Voucher not found or inactive", treatment_amount, admin_fee)

    if is_expired(voucher, now):
        return _reject(RejectionReason.expired, "Voucher has expired", treatment_amount, admin_fee, voucher)

    usage_count = max(int(voucher.current_usage or 0), int(usage_count))
    if voucher.usage_limit and usage_count >= voucher.usage_limit:
        return _reject(
            RejectionReason.usage_limit_reached, "Voucher has reached its usage limit", treatment_amount, admin_fee, voucher
        )

    for threshold in (voucher.min_amount, voucher.min_purchase):
        if threshold and treatment_amount < threshold:
            return _reject(
                RejectionReason.below_minimum,
                f"Minimum treatment amount for this voucher is {format_rupiah(threshold)} (admin fee not included)",
                treatment_amount,
                admin_fee,
                voucher,
            )

    discount_amount = compute_voucher_discount(voucher, treatment_amount)
    discounted = treatment_amount - discount_amount
    return ValidationResult(
        valid=True,
        reason=None,
        message=VALID_MESSAGE,
        treatment_amount=treatment_amount,
        admin_fee=admin_fee,
        voucher_id=voucher.id,
        voucher_code=voucher.code,
        discount_type=DiscountMode(voucher.discount_type).value,
        discount_value=Decimal(str(voucher.discount_value)),
        discount_amount=discount_amount,
        discounted_treatment_amount=discounted,
        final_total_amount=discounted + admin_fee,
    )


def _usages_for(voucher, usages: Iterable) -> list:
    return [u for u in usages if u.voucher_id == voucher.id]


def compute_voucher_status(voucher, usage_records: Iterable, now: datetime) -> Tuple[VoucherStatus, str]:
    # usage takes display precedence over expiry once any redemption exists
    usage_count = max(int(voucher.current_usage or 0), len(_usages_for(voucher, usage_records)))

    if not voucher.is_active:
        status = VoucherStatus.inactive
    elif usage_count > 0:
        status = VoucherStatus.used
    elif is_expired(voucher, now):
        status = VoucherStatus.expired
    elif voucher.usage_limit and usage_count >= voucher.usage_limit:
        status = VoucherStatus.used_up
    else:
        status = VoucherStatus.active
    return status, STATUS_TEXT[status]


def _usage_sort_key(usage):
    return usage.used_date or datetime.min


def compute_voucher_stats(vouchers: Iterable, usages: Iterable, recent_count: int = 10) -> dict:
    vouchers = list(vouchers)
    usages = list(usages)
    total_discount = sum(int(u.discount_amount or 0) for u in usages)
    used_ids = {u.voucher_id for u in usages}
    by_type = Counter(str(getattr(u.transaction_type, "value", u.transaction_type)) for u in usages)

    return {
        "total_vouchers": len(vouchers),
        "active_vouchers": sum(1 for v in vouchers if v.is_active),
        "used_vouchers": sum(1 for v in vouchers if v.id in used_ids or (v.current_usage or 0) > 0),
        "total_usages": len(usages),
        "total_discount_given": total_discount,
        "avg_discount_per_usage": to_units(Decimal(total_discount) / len(usages)) if usages else 0,
        "usages_by_type": {
            "treatment": by_type.get("treatment", 0),
            "sale": by_type.get("sale", 0),
        },
        "recent_usages": sorted(usages, key=_usage_sort_key, reverse=True)[:recent_count],
    }


def build_status_views(vouchers: Iterable, usages: Iterable, assignments: Iterable, now: datetime) -> List[dict]:
    usages = list(usages)
    assignments = list(assignments)
    views = []
    for voucher in vouchers:
        status, status_text = compute_voucher_status(voucher, usages, now)
        voucher_usages = _usages_for(voucher, usages)
        used_by_patients = {u.patient_id for u in voucher_usages}
        recipients = [
            {
                "patient_id": a.patient_id,
                "patient_name": a.patient_name or "Unknown",
                "assigned_date": a.assigned_date,
                "used": a.patient_id in used_by_patients,
            }
            for a in assignments
            if a.voucher_id == voucher.id
        ]
        views.append(
            {
                "voucher": voucher,
                "status": status.value,
                "status_text": status_text,
                "current_usage": max(int(voucher.current_usage or 0), len(voucher_usages)),
                "recipients": recipients,
                "usages": voucher_usages,
            }
        )

    views.sort(key=lambda v: v["voucher"].created_at or datetime.min, reverse=True)
    return views


def summarize_statuses(views: Iterable[dict]) -> Dict[str, int]:
    views = list(views)
    counts = Counter(v["status"] for v in views)
    summary = {"total": len(views)}
    summary.update({status.value: counts.get(status.value, 0) for status in VoucherStatus})
    return summary


def days_until(expiry, now: datetime) -> int:
    return math.ceil((_as_moment(expiry) - now).total_seconds() / 86400)


def compute_voucher_reminders(
    vouchers: Iterable,
    assignments: Iterable,
    usages: Iterable,
    now: datetime,
    window_days: int = 30,
    urgent_days: int = 3,
) -> List[dict]:
    """
    Reminders for assigned vouchers that expire soon and were not redeemed by
    their recipient. Ordered by days left, most urgent first.
    """
    active = {v.id: v for v in vouchers if v.is_active and v.expiry_date}
    redeemed = {(u.voucher_id, u.patient_id) for u in usages}

    reminders = []
    for assignment in assignments:
        voucher = active.get(assignment.voucher_id)
        if voucher is None:
            continue
        if (voucher.id, assignment.patient_id) in redeemed:
            continue

        remaining = days_until(voucher.expiry_date, now)
        if 0 <= remaining <= window_days:
            reminders.append(
                {
                    "voucher_id": voucher.id,
                    "voucher_code": voucher.code,
                    "voucher_title": voucher.title,
                    "discount_type": DiscountMode(voucher.discount_type).value,
                    "discount_value": voucher.discount_value,
                    "expiry_date": voucher.expiry_date,
                    "recipient_id": assignment.patient_id,
                    "recipient_name": assignment.patient_name or "Unknown",
                    "assigned_date": assignment.assigned_date,
                    "days_until_expiry": remaining,
                    "is_urgent": remaining <= urgent_days,
                }
            )

    reminders.sort(key=lambda r: r["days_until_expiry"])
    return reminders
