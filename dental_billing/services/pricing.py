from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterable, List, Optional, Sequence

from dental_billing.model import DiscountMode, PaymentStatus
from dental_billing.services.money import HUNDRED, clamp, percent_of, to_decimal, to_units


@dataclass(frozen=True)
class PricedTreatmentItem:
    id: str
    name: str
    unit_price: int
    discount_mode: str
    discount_input: Decimal
    discount_amount: int
    net_price: int


@dataclass(frozen=True)
class PricedMedicationItem:
    id: str
    name: str
    unit_price: int
    quantity: int
    line_total: int


@dataclass(frozen=True)
class EncounterTotals:
    subtotal: int
    total_discount: int
    net_treatment_total: int
    voucher_discount: int
    discounted_treatment_total: int
    medication_cost: int
    effective_admin_fee: int
    grand_total: int
    fee_percentage: Decimal
    doctor_fee: int
    down_payment_amount: int
    outstanding_amount: int
    treatment_items: List[PricedTreatmentItem] = field(default_factory=list)
    medication_items: List[PricedMedicationItem] = field(default_factory=list)


def calculate_line_discount(unit_price: int, discount_input, discount_mode) -> int:
    """
    Discount for one treatment line, always within 0..unit_price.

    Percentage inputs are clamped to 0-100 and fixed inputs to >= 0, so the
    function is total over its inputs and never raises.
    """
    price = max(0, int(unit_price))
    value = max(Decimal("0"), to_decimal(discount_input))

    if DiscountMode(discount_mode) == DiscountMode.percentage:
        value = min(value, HUNDRED)
        return min(percent_of(price, value), price)

    # a fixed discount can never exceed the item's own price
    return min(to_units(value), price)


def price_line_item(item) -> PricedTreatmentItem:
    mode = DiscountMode(item.discount_mode)
    discount_amount = calculate_line_discount(item.unit_price, item.discount_input, mode)
    return PricedTreatmentItem(
        id=item.id,
        name=item.name,
        unit_price=int(item.unit_price),
        discount_mode=mode.value,
        discount_input=to_decimal(item.discount_input),
        discount_amount=discount_amount,
        net_price=int(item.unit_price) - discount_amount,
    )


def medication_line_total(item) -> int:
    return max(0, int(item.unit_price)) * max(0, int(item.quantity))


def price_medication_item(item) -> PricedMedicationItem:
    return PricedMedicationItem(
        id=item.id,
        name=item.name,
        unit_price=int(item.unit_price),
        quantity=int(item.quantity),
        line_total=medication_line_total(item),
    )


def resolve_admin_fee(admin_fee_override: Optional[int], default_admin_fee: int) -> int:
    if admin_fee_override is not None:
        return max(0, int(admin_fee_override))
    return max(0, int(default_admin_fee))


def aggregate_encounter_totals(
    line_items: Iterable,
    medication_items: Iterable,
    fee_percentage,
    admin_fee_override: Optional[int],
    default_admin_fee: int,
    *,
    voucher_discount: int = 0,
    payment_status: PaymentStatus = PaymentStatus.paid,
    down_payment_amount: int = 0,
) -> EncounterTotals:
    """
    Totals for one encounter, recomputed from scratch on every call.

    The doctor fee is a percentage of the treatment net total only: medication
    cost and the admin fee never contribute to it. A voucher discount is taken
    off the treatment portion before medication and admin fee are added.
    For a down payment the fee base is what is still owed on treatments.
    """
    priced = [price_line_item(i) for i in line_items]
    medications = [price_medication_item(m) for m in medication_items]

    subtotal = sum(p.unit_price for p in priced)
    total_discount = sum(p.discount_amount for p in priced)
    net_treatment_total = subtotal - total_discount
    medication_cost = sum(m.line_total for m in medications)
    effective_admin_fee = resolve_admin_fee(admin_fee_override, default_admin_fee)

    voucher = clamp(int(voucher_discount or 0), 0, net_treatment_total)
    discounted_treatment_total = net_treatment_total - voucher
    grand_total = discounted_treatment_total + medication_cost + effective_admin_fee

    percentage = clamp(to_decimal(fee_percentage), Decimal("0"), HUNDRED)
    if PaymentStatus(payment_status) == PaymentStatus.down_payment:
        down_payment = max(0, int(down_payment_amount or 0))
        fee_base = max(0, net_treatment_total - down_payment)
        outstanding_amount = max(0, grand_total - down_payment)
    else:
        down_payment = 0
        fee_base = net_treatment_total
        outstanding_amount = 0

    return EncounterTotals(
        subtotal=subtotal,
        total_discount=total_discount,
        net_treatment_total=net_treatment_total,
        voucher_discount=voucher,
        discounted_treatment_total=discounted_treatment_total,
        medication_cost=medication_cost,
        effective_admin_fee=effective_admin_fee,
        grand_total=grand_total,
        fee_percentage=percentage,
        doctor_fee=percent_of(fee_base, percentage),
        down_payment_amount=down_payment,
        outstanding_amount=outstanding_amount,
        treatment_items=priced,
        medication_items=medications,
    )


def suggest_fee_percentage(doctor_id: str, treatment_names: Sequence[str], fee_settings: Iterable) -> Optional[Decimal]:
    """
    Pick the fee percentage of the best matching fee setting.

    A setting applies when its doctor list is empty or names the doctor, and
    its treatment list is empty or shares a treatment with the encounter.
    An explicit doctor match scores 10 and every shared treatment 5; the first
    highest score wins. Settings that only match generically never win on
    score, in that case the one flagged as default is used.
    """
    settings = list(fee_settings)
    selected = {name.strip().lower() for name in treatment_names}
    best = None
    best_score = 0

    for setting in settings:
        doctor_ids = list(setting.doctor_ids or [])
        if doctor_ids and doctor_id not in doctor_ids:
            continue

        setting_treatments = {t.strip().lower() for t in (setting.treatment_names or [])}
        matching = len(setting_treatments & selected)
        if setting_treatments and not matching:
            continue

        score = 0
        if doctor_id in doctor_ids:
            score += 10
        score += matching * 5

        if score > best_score:
            best = setting
            best_score = score

    if best is None:
        best = next((s for s in settings if s.is_default), None)
    if best is None:
        return None
    return to_decimal(best.fee_percentage)
