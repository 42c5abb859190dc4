# tests/test_voucher_engine.py
from datetime import date, datetime, timedelta
from decimal import Decimal
from types import SimpleNamespace

import pytest

from dental_billing.services.voucher_engine import (RejectionReason, VoucherStatus, build_status_views,
                                                    compute_voucher_discount, compute_voucher_reminders,
                                                    compute_voucher_stats, compute_voucher_status, days_until,
                                                    normalize_code, summarize_statuses, validate_voucher)

NOW = datetime(2025, 3, 10, 9, 0)


def voucher(**overrides):
    data = dict(
        id=1,
        code="HEMAT20",
        title="Hemat 20%",
        is_active=True,
        discount_type="percentage",
        discount_value=Decimal("20"),
        max_discount=None,
        min_amount=None,
        min_purchase=None,
        expiry_date=None,
        usage_limit=None,
        current_usage=0,
        created_at=NOW - timedelta(days=10),
    )
    data.update(overrides)
    return SimpleNamespace(**data)


def usage(voucher_id=1, patient_id="P001", discount_amount=50000, transaction_type="treatment", used_date=NOW):
    return SimpleNamespace(voucher_id=voucher_id, patient_id=patient_id, discount_amount=discount_amount,
                           transaction_type=transaction_type, used_date=used_date)


def assignment(voucher_id=1, patient_id="P001", patient_name="Siti Rahma"):
    return SimpleNamespace(voucher_id=voucher_id, patient_id=patient_id, patient_name=patient_name,
                           assigned_date=date(2025, 3, 1))


def test_normalize_code():
    assert normalize_code("  hemat20 ") == "HEMAT20"
    assert normalize_code(None) == ""


# ---------------------------------------------------------------- discount

def test_percentage_discount_is_capped():
    assert compute_voucher_discount(voucher(max_discount=50000), 1000000) == 50000


def test_percentage_discount_without_cap():
    assert compute_voucher_discount(voucher(), 1000000) == 200000


def test_fixed_discount_never_exceeds_treatment_amount():
    fixed = voucher(discount_type="fixed", discount_value=Decimal("150000"))
    assert compute_voucher_discount(fixed, 100000) == 100000
    assert compute_voucher_discount(fixed, 400000) == 150000


# ---------------------------------------------------------------- validation

def test_valid_voucher_breakdown_excludes_admin_fee():
    result = validate_voucher(voucher(max_discount=50000), 0, 1000000, 25000, NOW)

    assert result.valid
    assert result.reason is None
    assert result.discount_amount == 50000
    assert result.discounted_treatment_amount == 950000
    assert result.final_total_amount == 975000
    assert result.voucher_code == "HEMAT20"


@pytest.mark.parametrize("admin_fee", [0, 25000, 200000])
def test_below_minimum_ignores_admin_fee(admin_fee):
    result = validate_voucher(voucher(min_amount=500000), 0, 400000, admin_fee, NOW)

    assert not result.valid
    assert result.reason == RejectionReason.below_minimum
    assert "Rp 500.000" in result.message
    assert "admin fee not included" in result.message


def test_min_purchase_also_applies():
    result = validate_voucher(voucher(min_purchase=300000), 0, 299999, 0, NOW)
    assert result.reason == RejectionReason.below_minimum


def test_missing_or_inactive_voucher_is_not_found():
    assert validate_voucher(None, 0, 100000, 0, NOW).reason == RejectionReason.not_found
    assert validate_voucher(voucher(is_active=False), 0, 100000, 0, NOW).reason == RejectionReason.not_found


def test_expired_voucher():
    result = validate_voucher(voucher(expiry_date=NOW - timedelta(minutes=1)), 0, 100000, 0, NOW)
    assert result.reason == RejectionReason.expired


def test_expiry_checked_before_minimum():
    stale = voucher(expiry_date=NOW - timedelta(days=1), min_amount=500000)
    assert validate_voucher(stale, 0, 100, 0, NOW).reason == RejectionReason.expired


def test_usage_limit_counts_records_and_counter():
    limited = voucher(usage_limit=2, current_usage=1)
    assert validate_voucher(limited, 1, 100000, 0, NOW).valid
    assert validate_voucher(limited, 2, 100000, 0, NOW).reason == RejectionReason.usage_limit_reached

    # counter ahead of the records still blocks
    assert validate_voucher(voucher(usage_limit=2, current_usage=2), 0, 100000, 0, NOW).reason == \
        RejectionReason.usage_limit_reached


def test_validation_is_repeatable():
    v = voucher(max_discount=50000)
    assert validate_voucher(v, 0, 1000000, 25000, NOW) == validate_voucher(v, 0, 1000000, 25000, NOW)


# ---------------------------------------------------------------- status

@pytest.mark.parametrize(
    "overrides, usages, expected",
    [
        (dict(is_active=False, current_usage=3), [], VoucherStatus.inactive),
        (dict(expiry_date=NOW - timedelta(days=1)), [usage()], VoucherStatus.used),
        (dict(expiry_date=NOW - timedelta(days=1)), [], VoucherStatus.expired),
        (dict(), [], VoucherStatus.active),
        (dict(current_usage=1), [], VoucherStatus.used),
    ],
)
def test_status_priority(overrides, usages, expected):
    status, text = compute_voucher_status(voucher(**overrides), usages, NOW)
    assert status == expected
    assert text


def test_status_views_and_summary():
    vouchers = [
        voucher(id=1, created_at=NOW - timedelta(days=5)),
        voucher(id=2, code="LAMA", created_at=NOW - timedelta(days=1), expiry_date=NOW - timedelta(days=1)),
        voucher(id=3, code="OFF", is_active=False, created_at=NOW - timedelta(days=3)),
    ]
    views = build_status_views(vouchers, [usage(voucher_id=1)], [assignment(voucher_id=1),
                                                                  assignment(voucher_id=1, patient_id="P002",
                                                                             patient_name=None)], NOW)

    assert [v["voucher"].id for v in views] == [2, 3, 1]
    used = views[2]
    assert used["status"] == "used"
    assert used["current_usage"] == 1
    assert used["recipients"] == [
        {"patient_id": "P001", "patient_name": "Siti Rahma", "assigned_date": date(2025, 3, 1), "used": True},
        {"patient_id": "P002", "patient_name": "Unknown", "assigned_date": date(2025, 3, 1), "used": False},
    ]

    summary = summarize_statuses(views)
    assert summary["total"] == 3
    assert summary["used"] == 1
    assert summary["expired"] == 1
    assert summary["inactive"] == 1
    assert summary["active"] == 0


# ---------------------------------------------------------------- stats

def test_stats():
    vouchers = [voucher(id=1), voucher(id=2, is_active=False), voucher(id=3)]
    usages = [
        usage(voucher_id=1, discount_amount=50000, used_date=NOW - timedelta(days=2)),
        usage(voucher_id=1, discount_amount=25001, transaction_type="sale", used_date=NOW),
    ]
    stats = compute_voucher_stats(vouchers, usages, recent_count=1)

    assert stats["total_vouchers"] == 3
    assert stats["active_vouchers"] == 2
    assert stats["used_vouchers"] == 1
    assert stats["total_usages"] == 2
    assert stats["total_discount_given"] == 75001
    assert stats["avg_discount_per_usage"] == 37501
    assert stats["usages_by_type"] == {"treatment": 1, "sale": 1}
    assert stats["recent_usages"] == [usages[1]]


def test_stats_without_usages():
    stats = compute_voucher_stats([], [])
    assert stats["avg_discount_per_usage"] == 0
    assert stats["recent_usages"] == []


# ---------------------------------------------------------------- reminders

def test_days_until_rounds_up_partial_days():
    assert days_until(NOW + timedelta(days=2, hours=1), NOW) == 3
    assert days_until(NOW + timedelta(hours=5), NOW) == 1
    assert days_until(NOW, NOW) == 0


def test_reminders_window_urgency_and_order():
    vouchers = [
        voucher(id=1, expiry_date=NOW + timedelta(days=20)),
        voucher(id=2, code="CEPAT", expiry_date=NOW + timedelta(days=2)),
        voucher(id=3, code="JAUH", expiry_date=NOW + timedelta(days=45)),
        voucher(id=4, code="LEWAT", expiry_date=NOW - timedelta(days=1)),
        voucher(id=5, code="MATI", is_active=False, expiry_date=NOW + timedelta(days=1)),
        voucher(id=6, code="SELAMANYA"),
    ]
    assignments = [assignment(voucher_id=i) for i in range(1, 7)]
    reminders = compute_voucher_reminders(vouchers, assignments, [], NOW)

    assert [r["voucher_id"] for r in reminders] == [2, 1]
    assert reminders[0]["is_urgent"] is True
    assert reminders[0]["days_until_expiry"] == 2
    assert reminders[1]["is_urgent"] is False
    assert reminders[1]["recipient_name"] == "Siti Rahma"


def test_reminders_skip_recipients_who_redeemed():
    vouchers = [voucher(id=1, expiry_date=NOW + timedelta(days=5))]
    assignments = [assignment(patient_id="P001"), assignment(patient_id="P002", patient_name="Budi Santoso")]
    reminders = compute_voucher_reminders(vouchers, assignments, [usage(patient_id="P001")], NOW)

    assert [r["recipient_id"] for r in reminders] == ["P002"]


def test_reminder_window_is_configurable():
    vouchers = [voucher(id=1, expiry_date=NOW + timedelta(days=10))]
    reminders = compute_voucher_reminders(vouchers, [assignment()], [], NOW, window_days=7, urgent_days=3)
    assert reminders == []
    reminders = compute_voucher_reminders(vouchers, [assignment()], [], NOW, window_days=14, urgent_days=10)
    assert reminders[0]["is_urgent"] is True
