# tests/test_pricing.py
from decimal import Decimal
from types import SimpleNamespace

import pytest

from dental_billing.model import DiscountMode, MedicationLineItem, PaymentStatus, TreatmentLineItem
from dental_billing.services.money import format_rupiah, percent_of, to_units
from dental_billing.services.pricing import (aggregate_encounter_totals, calculate_line_discount,
                                             medication_line_total, price_line_item, resolve_admin_fee,
                                             suggest_fee_percentage)


def item(unit_price, discount_input=0, mode="percentage", name="Scaling", id="T1"):
    return TreatmentLineItem(id=id, name=name, unit_price=unit_price, discount_mode=mode,
                             discount_input=discount_input)


def setting(fee_percentage, doctor_ids=(), treatment_names=(), is_default=False):
    return SimpleNamespace(
        doctor_ids=list(doctor_ids),
        treatment_names=list(treatment_names),
        fee_percentage=Decimal(str(fee_percentage)),
        is_default=is_default,
    )


# ---------------------------------------------------------------- line discounts

def test_percentage_discount_on_line_item():
    priced = price_line_item(item(200000, 10))
    assert priced.discount_amount == 20000
    assert priced.net_price == 180000


def test_fixed_discount_is_clamped_to_unit_price():
    priced = price_line_item(item(50000, 70000, mode="fixed"))
    assert priced.discount_amount == 50000
    assert priced.net_price == 0


def test_nominal_is_accepted_as_fixed_mode():
    assert item(50000, 10000, mode="nominal").discount_mode == DiscountMode.fixed


@pytest.mark.parametrize(
    "discount_input, mode, expected",
    [
        (150, DiscountMode.percentage, 100000),
        (-5, DiscountMode.percentage, 0),
        (-5000, DiscountMode.fixed, 0),
        (0, DiscountMode.fixed, 0),
        (100, DiscountMode.percentage, 100000),
    ],
)
def test_line_discount_clamps_out_of_range_inputs(discount_input, mode, expected):
    assert calculate_line_discount(100000, discount_input, mode) == expected


def test_percentage_discount_rounds_half_up_to_whole_rupiah():
    # 12.5% of 12,345 = 1,543.125
    assert calculate_line_discount(12345, Decimal("12.5"), DiscountMode.percentage) == 1543
    # 0.5% of 101 = 0.505
    assert calculate_line_discount(101, Decimal("0.5"), DiscountMode.percentage) == 1


def test_medication_line_total():
    med = MedicationLineItem(id="M1", name="Amoxicillin", unit_price=50000, quantity=3)
    assert medication_line_total(med) == 150000


# ---------------------------------------------------------------- encounter totals

def test_encounter_totals_reference_scenario():
    meds = [MedicationLineItem(id="M1", name="Amoxicillin", unit_price=50000, quantity=3)]
    totals = aggregate_encounter_totals([item(600000), item(400000, id="T2")], meds, 40, None, 25000)

    assert totals.subtotal == 1000000
    assert totals.total_discount == 0
    assert totals.net_treatment_total == 1000000
    assert totals.medication_cost == 150000
    assert totals.effective_admin_fee == 25000
    assert totals.doctor_fee == 400000
    assert totals.grand_total == 1175000
    assert totals.outstanding_amount == 0


def test_grand_total_and_fee_hold_for_discounted_items():
    lines = [item(200000, 10), item(50000, 70000, mode="fixed", id="T2")]
    totals = aggregate_encounter_totals(lines, [], Decimal("30"), None, 25000)

    assert totals.subtotal == 250000
    assert totals.total_discount == 70000
    assert totals.net_treatment_total == 180000
    assert totals.net_treatment_total == sum(p.net_price for p in totals.treatment_items)
    assert totals.grand_total == totals.net_treatment_total + totals.medication_cost + totals.effective_admin_fee
    assert totals.doctor_fee == 54000


def test_doctor_fee_ignores_medication_and_admin_fee():
    meds = [MedicationLineItem(id="M1", name="Ibuprofen", unit_price=1000000, quantity=5)]
    with_meds = aggregate_encounter_totals([item(300000)], meds, 50, 500000, 25000)
    without = aggregate_encounter_totals([item(300000)], [], 50, 0, 25000)
    assert with_meds.doctor_fee == without.doctor_fee == 150000


def test_admin_fee_override_wins_even_when_zero():
    assert aggregate_encounter_totals([item(100000)], [], 0, 0, 25000).effective_admin_fee == 0
    assert aggregate_encounter_totals([item(100000)], [], 0, 10000, 25000).effective_admin_fee == 10000
    assert resolve_admin_fee(None, 25000) == 25000


def test_empty_encounter_totals_only_admin_fee():
    totals = aggregate_encounter_totals([], [], 40, None, 25000)
    assert totals.subtotal == 0
    assert totals.doctor_fee == 0
    assert totals.grand_total == 25000


def test_voucher_discount_reduces_treatment_portion_only():
    meds = [MedicationLineItem(id="M1", name="Amoxicillin", unit_price=50000, quantity=3)]
    totals = aggregate_encounter_totals([item(1000000)], meds, 40, None, 25000, voucher_discount=50000)

    assert totals.voucher_discount == 50000
    assert totals.discounted_treatment_total == 950000
    assert totals.grand_total == 950000 + 150000 + 25000
    # the doctor is paid on the treatment net total
    assert totals.doctor_fee == 400000


def test_voucher_discount_is_clamped_to_treatment_total():
    totals = aggregate_encounter_totals([item(100000)], [], 0, None, 25000, voucher_discount=500000)
    assert totals.voucher_discount == 100000
    assert totals.grand_total == 25000


def test_down_payment_fee_base_is_remaining_treatment_amount():
    totals = aggregate_encounter_totals(
        [item(1000000)], [], 40, None, 25000,
        payment_status=PaymentStatus.down_payment,
        down_payment_amount=300000,
    )
    assert totals.doctor_fee == 280000
    assert totals.down_payment_amount == 300000
    assert totals.outstanding_amount == 1025000 - 300000


def test_down_payment_amount_ignored_when_paid_in_full():
    totals = aggregate_encounter_totals([item(1000000)], [], 40, None, 25000, down_payment_amount=300000)
    assert totals.doctor_fee == 400000
    assert totals.down_payment_amount == 0


def test_fee_percentage_is_clamped():
    assert aggregate_encounter_totals([item(100000)], [], 150, None, 0).doctor_fee == 100000
    assert aggregate_encounter_totals([item(100000)], [], None, None, 0).doctor_fee == 0


def test_recomputation_is_idempotent():
    lines = [item(333333, Decimal("33.3")), item(77777, 1234, mode="fixed", id="T2")]
    first = aggregate_encounter_totals(lines, [], Decimal("37.5"), None, 25000)
    second = aggregate_encounter_totals(lines, [], Decimal("37.5"), None, 25000)
    assert first == second


# ---------------------------------------------------------------- fee suggestion

def test_explicit_doctor_and_treatment_match_wins():
    settings = [
        setting(30, is_default=True),
        setting(35, doctor_ids=["D001"]),
        setting(45, doctor_ids=["D001"], treatment_names=["Scaling"]),
    ]
    assert suggest_fee_percentage("D001", ["scaling ", "Filling"], settings) == Decimal("45")


def test_treatment_only_match():
    settings = [setting(25, treatment_names=["Crown", "Bridge"])]
    assert suggest_fee_percentage("D002", ["Crown"], settings) == Decimal("25")


def test_settings_for_other_doctors_are_skipped():
    settings = [setting(50, doctor_ids=["D002"]), setting(30, is_default=True)]
    assert suggest_fee_percentage("D001", ["Scaling"], settings) == Decimal("30")


def test_first_setting_wins_a_tie():
    settings = [setting(35, doctor_ids=["D001"]), setting(40, doctor_ids=["D001"])]
    assert suggest_fee_percentage("D001", [], settings) == Decimal("35")


def test_no_matching_setting_returns_none():
    assert suggest_fee_percentage("D001", ["Scaling"], [setting(20, treatment_names=["Crown"])]) is None
    assert suggest_fee_percentage("D001", ["Scaling"], []) is None


# ---------------------------------------------------------------- money helpers

def test_money_helpers():
    assert to_units(Decimal("2.5")) == 3
    assert percent_of(1000000, 40) == 400000
    assert format_rupiah(1175000) == "Rp 1.175.000"


@pytest.mark.parametrize("discount_input", [float("nan"), float("inf"), Decimal("NaN"), Decimal("-Infinity")])
@pytest.mark.parametrize("mode", [DiscountMode.fixed, DiscountMode.percentage])
def test_non_finite_discount_input_means_no_discount(discount_input, mode):
    assert calculate_line_discount(100000, discount_input, mode) == 0
