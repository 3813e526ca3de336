"""Data access for availability slots.

All functions take the caller's session and never commit; the surrounding
transaction decides the outcome.
"""

from datetime import datetime

from sqlalchemy.orm import Session
from sqlalchemy.orm.util import identity_key

from clinic_backend.models.availability import AvailabilitySlot


def find_covering_slot(db: Session, provider_id: int, start_time: datetime, end_time: datetime) -> AvailabilitySlot | None:
    """Earliest available slot of the provider that contains ``[start_time, end_time)``."""
    return db.query(AvailabilitySlot).filter(
        AvailabilitySlot.provider_id == provider_id,
        AvailabilitySlot.start_time <= start_time,
        AvailabilitySlot.end_time >= end_time,
        AvailabilitySlot.is_available.is_(True),
    ).order_by(AvailabilitySlot.start_time.asc(), AvailabilitySlot.id.asc()).first()


def find_held_overlap(
    db: Session,
    provider_id: int,
    start_time: datetime,
    end_time: datetime,
    exclude_slot_id: int | None = None,
) -> AvailabilitySlot | None:
    """An unavailable slot of the provider overlapping ``[start_time, end_time)``, if any."""
    query = db.query(AvailabilitySlot).filter(
        AvailabilitySlot.provider_id == provider_id,
        AvailabilitySlot.is_available.is_(False),
        AvailabilitySlot.start_time < end_time,
        AvailabilitySlot.end_time > start_time,
    )
    if exclude_slot_id is not None:
        query = query.filter(AvailabilitySlot.id != exclude_slot_id)
    return query.first()


def find_any_overlap(
    db: Session,
    provider_id: int,
    start_time: datetime,
    end_time: datetime,
    exclude_slot_id: int | None = None,
) -> AvailabilitySlot | None:
    query = db.query(AvailabilitySlot).filter(
        AvailabilitySlot.provider_id == provider_id,
        AvailabilitySlot.start_time < end_time,
        AvailabilitySlot.end_time > start_time,
    )
    if exclude_slot_id is not None:
        query = query.filter(AvailabilitySlot.id != exclude_slot_id)
    return query.order_by(AvailabilitySlot.start_time.asc()).first()


def create_slot(
    db: Session,
    provider_id: int,
    provider_kind: str,
    clinic_id: int | None,
    start_time: datetime,
    end_time: datetime,
    is_available: bool,
) -> AvailabilitySlot:
    slot = AvailabilitySlot(
        provider_id=provider_id,
        provider_kind=provider_kind,
        clinic_id=clinic_id,
        start_time=start_time,
        end_time=end_time,
        is_available=is_available,
    )
    db.add(slot)
    db.flush()
    return slot


def _expire_cached(db: Session, slot_id: int) -> None:
    # Bulk updates bypass the identity map; drop any stale in-session copy.
    cached = db.identity_map.get(identity_key(AvailabilitySlot, slot_id))
    if cached is not None:
        db.expire(cached)


def _set_availability(db: Session, slot_id: int, is_available: bool, only_if_available: bool = False) -> int:
    db.flush()
    query = db.query(AvailabilitySlot).filter(AvailabilitySlot.id == slot_id)
    if only_if_available:
        query = query.filter(AvailabilitySlot.is_available.is_(True))
    updated = query.update({AvailabilitySlot.is_available: is_available}, synchronize_session=False)
    _expire_cached(db, slot_id)
    return updated


def claim_slot(db: Session, slot_id: int) -> bool:
    """Flip an available slot to unavailable.

    Returns False when no row was updated, which means a concurrent
    transaction claimed the slot first.
    """
    return _set_availability(db, slot_id, False, only_if_available=True) == 1


def hold_slot(db: Session, slot_id: int) -> None:
    _set_availability(db, slot_id, False)


def release_slot(db: Session, slot_id: int) -> None:
    _set_availability(db, slot_id, True)


def clinic_ids_for_provider(db: Session, provider_id: int) -> list[int]:
    rows = db.query(AvailabilitySlot.clinic_id).filter(
        AvailabilitySlot.provider_id == provider_id,
        AvailabilitySlot.clinic_id.is_not(None),
    ).distinct().order_by(AvailabilitySlot.clinic_id.asc()).all()
    return [clinic_id for (clinic_id,) in rows]
