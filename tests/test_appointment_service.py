# tests/test_appointment_service.py
from datetime import datetime, timedelta, timezone

import pytest

from clinicgate import models, schemas
from clinicgate.errors import InvalidScheduleError, NotFoundError, SchedulingConflictError
from clinicgate.services.appointment_service import (
    check_appointment_conflict,
    reschedule_appointment,
    schedule_appointment,
    update_appointment_status,
)


def at(hour, minute=0):
    return datetime(2030, 1, 15, hour, minute, tzinfo=timezone.utc)


@pytest.fixture
def patient(make_patient):
    return make_patient()


@pytest.fixture
def add_appointment(db_session):
    def _add(patient, start, end, status=models.AppointmentStatus.SCHEDULED, title="Checkup"):
        appointment = models.Appointment(
            patient_id=patient.id,
            title=title,
            start_time=start,
            end_time=end,
            status=status,
        )
        db_session.add(appointment)
        db_session.commit()
        db_session.refresh(appointment)
        return appointment

    return _add


@pytest.fixture
def existing(patient, add_appointment):
    # 10:00 - 11:00
    return add_appointment(patient, at(10), at(11))


@pytest.mark.asyncio
@pytest.mark.parametrize("start, end", [
    (at(10, 30), at(11, 30)),  # starts inside
    (at(9, 30), at(10, 30)),  # ends inside
    (at(10, 15), at(10, 45)),  # contained
    (at(9), at(12)),  # contains
    (at(10), at(11)),  # identical
])
async def test_overlapping_intervals_conflict(db_session, patient, existing, start, end):
    assert await check_appointment_conflict(db_session, patient.id, start, end) is True


@pytest.mark.asyncio
@pytest.mark.parametrize("start, end", [
    (at(11), at(12)),  # starts when existing ends
    (at(9), at(10)),  # ends when existing starts
    (at(14), at(15)),
])
async def test_adjacent_or_disjoint_intervals_do_not_conflict(db_session, patient, existing, start, end):
    assert await check_appointment_conflict(db_session, patient.id, start, end) is False


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [
    models.AppointmentStatus.CANCELLED,
    models.AppointmentStatus.COMPLETED,
    models.AppointmentStatus.NO_SHOW,
])
async def test_terminal_appointments_never_conflict(db_session, patient, add_appointment, status):
    add_appointment(patient, at(10), at(11), status=status)
    assert await check_appointment_conflict(db_session, patient.id, at(10), at(11)) is False


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [
    models.AppointmentStatus.CONFIRMED,
    models.AppointmentStatus.IN_PROGRESS,
])
async def test_active_appointments_conflict(db_session, patient, add_appointment, status):
    add_appointment(patient, at(10), at(11), status=status)
    assert await check_appointment_conflict(db_session, patient.id, at(10, 30), at(10, 45)) is True


@pytest.mark.asyncio
async def test_other_patients_do_not_conflict(db_session, make_patient, existing):
    other = make_patient(first_name="Kiran")
    assert await check_appointment_conflict(db_session, other.id, at(10), at(11)) is False


@pytest.mark.asyncio
async def test_excluded_appointment_is_ignored(db_session, patient, existing):
    assert await check_appointment_conflict(
        db_session, patient.id, at(10, 30), at(11, 30), exclude_appointment_id=existing.id
    ) is False


@pytest.mark.asyncio
async def test_offset_times_are_compared_in_utc(db_session, patient, existing):
    plus_two = timezone(timedelta(hours=2))
    start = datetime(2030, 1, 15, 12, 30, tzinfo=plus_two)  # 10:30 UTC
    end = datetime(2030, 1, 15, 13, 30, tzinfo=plus_two)
    assert await check_appointment_conflict(db_session, patient.id, start, end) is True


# --- Scheduling ---

@pytest.mark.asyncio
async def test_schedule_appointment_creates_free_slot(db_session, patient, existing):
    created = await schedule_appointment(
        db_session,
        schemas.AppointmentCreate(patient_id=patient.id, title="Follow up", start_time=at(11), end_time=at(11, 30)),
        created_by=None,
    )
    assert created.id is not None
    assert created.status == models.AppointmentStatus.SCHEDULED


@pytest.mark.asyncio
async def test_schedule_appointment_refuses_overlap(db_session, patient, existing):
    with pytest.raises(SchedulingConflictError) as exc_info:
        await schedule_appointment(
            db_session,
            schemas.AppointmentCreate(patient_id=patient.id, title="Scan", start_time=at(10, 30), end_time=at(11, 30)),
        )
    assert exc_info.value.message == "There is a scheduling conflict with another appointment"
    assert db_session.query(models.Appointment).count() == 1


@pytest.mark.asyncio
async def test_schedule_appointment_requires_patient(db_session):
    with pytest.raises(NotFoundError):
        await schedule_appointment(
            db_session,
            schemas.AppointmentCreate(patient_id=999, title="Scan", start_time=at(10), end_time=at(11)),
        )


@pytest.mark.asyncio
async def test_reschedule_within_own_slot_is_allowed(db_session, existing):
    updated = await reschedule_appointment(
        db_session, existing.id, schemas.AppointmentUpdate(start_time=at(10, 15), end_time=at(11, 15))
    )
    assert updated.start_time.replace(tzinfo=timezone.utc) == at(10, 15)


@pytest.mark.asyncio
async def test_reschedule_into_another_appointment_conflicts(db_session, patient, existing, add_appointment):
    later = add_appointment(patient, at(13), at(14))
    with pytest.raises(SchedulingConflictError):
        await reschedule_appointment(db_session, later.id, schemas.AppointmentUpdate(start_time=at(10, 45)))


@pytest.mark.asyncio
async def test_reschedule_rejects_reversed_interval(db_session, existing):
    with pytest.raises(InvalidScheduleError):
        await reschedule_appointment(db_session, existing.id, schemas.AppointmentUpdate(end_time=at(9)))


@pytest.mark.asyncio
async def test_text_only_update_skips_conflict_check(db_session, patient, existing, add_appointment):
    # Data that already overlaps is left alone when the schedule does not move
    twin = add_appointment(patient, at(10), at(11), title="Duplicate")
    updated = await reschedule_appointment(db_session, twin.id, schemas.AppointmentUpdate(notes="Bring reports"))
    assert updated.notes == "Bring reports"


@pytest.mark.asyncio
async def test_reschedule_missing_appointment(db_session):
    with pytest.raises(NotFoundError):
        await reschedule_appointment(db_session, 404, schemas.AppointmentUpdate(title="Nope"))


@pytest.mark.asyncio
async def test_cancelled_slot_can_be_rebooked(db_session, patient, existing):
    update_appointment_status(
        db_session, existing.id, schemas.AppointmentStatusUpdate(status=models.AppointmentStatus.CANCELLED)
    )
    created = await schedule_appointment(
        db_session,
        schemas.AppointmentCreate(patient_id=patient.id, title="Rebooked", start_time=at(10), end_time=at(11)),
    )
    assert created.id != existing.id
