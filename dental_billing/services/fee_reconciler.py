from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Dict, Iterable, List, Optional, Tuple

FeeKey = Tuple[str, str, date]


@dataclass
class DoctorFeeLedgerEntry:
    doctor_id: str
    doctor_name: Optional[str]
    shift: str
    date: date
    encounter_count: int
    computed_fee: int
    sitting_fee: int
    sitting_top_up: int
    payable_fee: int


@dataclass
class DoctorFeeSummary:
    doctor_id: str
    doctor_name: Optional[str]
    total_sessions: int = 0
    total_computed_fee: int = 0
    total_sitting_top_up: int = 0
    total_payable_fee: int = 0
    entries: List[DoctorFeeLedgerEntry] = field(default_factory=list)


def _as_date(value) -> date:
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value))


def fee_key(doctor_id, shift, on_date) -> FeeKey:
    if isinstance(shift, Enum):
        shift = shift.value
    return (str(doctor_id), str(shift), _as_date(on_date))


def payable_fee(computed_fee: int, sitting_fee: int) -> int:
    # the sitting fee is a floor, not a bonus on top of a higher computed fee
    if computed_fee > 0:
        return max(computed_fee, sitting_fee)
    return sitting_fee


def _sitting_fee_map(sitting_fees: Iterable) -> Dict[FeeKey, object]:
    # keys are unique in storage; for ad-hoc inputs the last record wins
    return {fee_key(s.doctor_id, s.shift, s.date): s for s in sitting_fees}


def _group_encounters(encounters: Iterable) -> Dict[FeeKey, list]:
    groups = defaultdict(list)
    for encounter in encounters:
        groups[fee_key(encounter.doctor_id, encounter.shift, encounter.date)].append(encounter)
    return groups


def reconcile_doctor_fee(encounters: Iterable, sitting_fees: Iterable) -> Dict[FeeKey, int]:
    """
    Payable doctor fee per (doctor_id, shift, date).

    Encounter doctor fees are summed per exact key and compared with the
    sitting fee agreed for that key (0 when none exists). A key that only
    has a sitting fee still yields an entry: the doctor worked the shift.
    """
    groups = _group_encounters(encounters)
    sitting = _sitting_fee_map(sitting_fees)

    result = {}
    for key in set(groups) | set(sitting):
        computed = sum(int(e.doctor_fee or 0) for e in groups.get(key, []))
        floor = int(sitting[key].amount) if key in sitting else 0
        result[key] = payable_fee(computed, floor)
    return result


def build_fee_ledger(
    encounters: Iterable,
    sitting_fees: Iterable,
    start: Optional[date] = None,
    end: Optional[date] = None,
    doctor_id: Optional[str] = None,
) -> List[DoctorFeeLedgerEntry]:
    groups = _group_encounters(encounters)
    sitting = _sitting_fee_map(sitting_fees)

    entries = []
    for key in set(groups) | set(sitting):
        key_doctor, key_shift, key_date = key
        if doctor_id is not None and key_doctor != doctor_id:
            continue
        if start is not None and key_date < start:
            continue
        if end is not None and key_date > end:
            continue

        group = groups.get(key, [])
        computed = sum(int(e.doctor_fee or 0) for e in group)
        sitting_record = sitting.get(key)
        floor = int(sitting_record.amount) if sitting_record is not None else 0
        payable = payable_fee(computed, floor)

        names = [getattr(e, "doctor_name", None) for e in group]
        names.append(getattr(sitting_record, "doctor_name", None))
        doctor_name = next((n for n in names if n), None)

        entries.append(
            DoctorFeeLedgerEntry(
                doctor_id=key_doctor,
                doctor_name=doctor_name,
                shift=key_shift,
                date=key_date,
                encounter_count=len(group),
                computed_fee=computed,
                sitting_fee=floor,
                sitting_top_up=payable - computed,
                payable_fee=payable,
            )
        )

    # newest first, then by doctor
    entries.sort(key=lambda e: (e.doctor_id, e.shift))
    entries.sort(key=lambda e: e.date, reverse=True)
    return entries


def summarize_ledger_by_doctor(entries: Iterable[DoctorFeeLedgerEntry]) -> List[DoctorFeeSummary]:
    summaries: Dict[str, DoctorFeeSummary] = {}
    for entry in entries:
        summary = summaries.get(entry.doctor_id)
        if summary is None:
            summary = DoctorFeeSummary(doctor_id=entry.doctor_id, doctor_name=entry.doctor_name)
            summaries[entry.doctor_id] = summary
        summary.doctor_name = summary.doctor_name or entry.doctor_name
        summary.total_sessions += 1
        summary.total_computed_fee += entry.computed_fee
        summary.total_sitting_top_up += entry.sitting_top_up
        summary.total_payable_fee += entry.payable_fee
        summary.entries.append(entry)

    return sorted(summaries.values(), key=lambda s: s.total_payable_fee, reverse=True)


def summarize_ledger(entries: Iterable[DoctorFeeLedgerEntry]) -> dict:
    entries = list(entries)
    return {
        "total_sessions": len(entries),
        "total_computed_fee": sum(e.computed_fee for e in entries),
        "total_sitting_top_up": sum(e.sitting_top_up for e in entries),
        "total_payable_fee": sum(e.payable_fee for e in entries),
    }
