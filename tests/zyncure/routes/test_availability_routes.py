from datetime import date, datetime, time

import pytest

from zyncure.core.errors import ConflictError, NotFound, ValidationError
from zyncure.models.appointment import Appointment
from zyncure.models.availability import DoctorAvailability, UnavailableDate
from zyncure.routes.availability_routes import (
    AvailabilityTemplateRequest,
    TimeSlot,
    UnavailableDateRequest,
    add_unavailable_exception,
    convert_to_12_hour,
    create_template,
    day_of_week_for,
    delete_unavailable_exception,
    derive_bookable_slots,
    list_bookable_slots,
    partition_window,
    update_template,
    validate_exception_window,
    validate_template,
)

# 2030-01-07 is a Monday.
FUTURE_MONDAY = date(2030, 1, 7)


def _template(**overrides) -> DoctorAvailability:
    values = {
        'id': None,
        'doctor_id': 'doctor-1',
        'day_of_week': 1,
        'start_time': time(9, 0),
        'end_time': time(12, 0),
        'duration_minutes': 30,
        'is_active': True,
    }
    values.update(overrides)
    return DoctorAvailability(**values)


def _book(db, doctor, patient, slot_time: time, status: str = 'requested', slot_date: date = FUTURE_MONDAY) -> Appointment:
    appointment = Appointment(
        doctor_id=doctor.id,
        patient_id=patient.id,
        date=slot_date,
        time=slot_time,
        status=status,
    )
    db.add(appointment)
    db.commit()
    return appointment


def test_day_of_week_for_counts_from_sunday() -> None:
    assert day_of_week_for(date(2026, 10, 18)) == 0
    assert day_of_week_for(FUTURE_MONDAY) == 1
    assert day_of_week_for(date(2026, 10, 24)) == 6


def test_convert_to_12_hour() -> None:
    assert convert_to_12_hour(time(0, 5)) == '12:05 AM'
    assert convert_to_12_hour(time(9, 30)) == '9:30 AM'
    assert convert_to_12_hour(time(12, 0)) == '12:00 PM'
    assert convert_to_12_hour(time(17, 45)) == '5:45 PM'


def test_partition_window_splits_hour_into_half_hours() -> None:
    assert partition_window(time(9, 0), time(10, 0), 30) == [
        TimeSlot(time(9, 0), time(9, 30)),
        TimeSlot(time(9, 30), time(10, 0)),
    ]


def test_partition_window_drops_trailing_partial_slot() -> None:
    slots = partition_window(time(9, 0), time(10, 10), 30)

    assert [slot.start for slot in slots] == [time(9, 0), time(9, 30)]
    assert slots[-1].end == time(10, 0)


@pytest.mark.parametrize(
    ('start', 'end', 'duration'),
    [
        (time(8, 0), time(17, 0), 15),
        (time(8, 0), time(17, 0), 45),
        (time(13, 10), time(15, 0), 60),
        (time(9, 0), time(9, 40), 45),
    ],
)
def test_partition_window_produces_floor_count_of_contiguous_slots(start: time, end: time, duration: int) -> None:
    slots = partition_window(start, end, duration)
    window_minutes = (end.hour * 60 + end.minute) - (start.hour * 60 + start.minute)

    assert len(slots) == window_minutes // duration
    for slot in slots:
        assert (slot.end.hour * 60 + slot.end.minute) - (slot.start.hour * 60 + slot.start.minute) == duration
    for previous, following in zip(slots, slots[1:]):
        assert previous.end == following.start


@pytest.mark.parametrize(
    ('overrides', 'error_detail'),
    [
        ({'start_time': time(10, 0), 'end_time': time(10, 0)}, 'Start time must be before end time.'),
        ({'start_time': time(11, 0), 'end_time': time(10, 0)}, 'Start time must be before end time.'),
        ({'duration_minutes': 20}, 'Slot duration must be 15, 30, 45 or 60 minutes.'),
        ({'day_of_week': 7}, 'Day of week must be between 0 (Sunday) and 6 (Saturday).'),
    ],
)
def test_validate_template_rejects_malformed_windows(overrides: dict, error_detail: str) -> None:
    with pytest.raises(ValidationError) as exception_info:
        validate_template(_template(**overrides), [])

    assert exception_info.value.status_code == 400
    assert exception_info.value.detail == error_detail


def test_validate_template_rejects_overlap_on_same_day() -> None:
    existing = _template(id=1, start_time=time(9, 0), end_time=time(12, 0))

    with pytest.raises(ConflictError) as exception_info:
        validate_template(_template(start_time=time(11, 30), end_time=time(13, 0)), [existing])

    assert exception_info.value.status_code == 409
    assert 'Monday' in exception_info.value.detail


@pytest.mark.parametrize(
    'candidate_overrides',
    [
        {'start_time': time(12, 0), 'end_time': time(14, 0)},
        {'day_of_week': 2},
        {'doctor_id': 'doctor-2'},
        {'is_active': False},
    ],
)
def test_validate_template_allows_non_conflicting_windows(candidate_overrides: dict) -> None:
    existing = _template(id=1, start_time=time(9, 0), end_time=time(12, 0))

    validate_template(_template(**candidate_overrides), [existing])


def test_validate_template_ignores_inactive_existing_and_itself() -> None:
    inactive = _template(id=1, is_active=False)
    itself = _template(id=2)

    validate_template(_template(id=2, start_time=time(10, 0)), [inactive, itself])


def test_validate_exception_window_requires_both_bounds() -> None:
    with pytest.raises(ValidationError):
        validate_exception_window(time(9, 0), None)

    with pytest.raises(ValidationError):
        validate_exception_window(time(10, 0), time(9, 0))

    validate_exception_window(None, None)
    validate_exception_window(time(9, 0), time(10, 0))


def test_derive_bookable_slots_returns_empty_without_template(db, doctor) -> None:
    assert derive_bookable_slots(db, doctor.id, FUTURE_MONDAY) == []


def test_derive_bookable_slots_skips_inactive_templates(db, doctor, monday_template) -> None:
    monday_template.is_active = False
    db.commit()

    assert derive_bookable_slots(db, doctor.id, FUTURE_MONDAY) == []


def test_derive_bookable_slots_only_uses_matching_weekday(db, doctor, monday_template) -> None:
    assert derive_bookable_slots(db, doctor.id, date(2030, 1, 8)) == []


def test_booking_a_slot_removes_it_from_derived_slots(db, doctor, patient, monday_template) -> None:
    assert derive_bookable_slots(db, doctor.id, FUTURE_MONDAY) == [
        TimeSlot(time(9, 0), time(9, 30)),
        TimeSlot(time(9, 30), time(10, 0)),
    ]

    _book(db, doctor, patient, time(9, 0))

    assert derive_bookable_slots(db, doctor.id, FUTURE_MONDAY) == [TimeSlot(time(9, 30), time(10, 0))]


@pytest.mark.parametrize('status', ['cancelled', 'rescheduled'])
def test_released_appointments_do_not_occupy_slots(db, doctor, patient, monday_template, status: str) -> None:
    _book(db, doctor, patient, time(9, 0), status=status)

    assert [slot.start for slot in derive_bookable_slots(db, doctor.id, FUTURE_MONDAY)] == [time(9, 0), time(9, 30)]


def test_legacy_pending_appointment_occupies_slot(db, doctor, patient, monday_template) -> None:
    _book(db, doctor, patient, time(9, 30), status='pending')

    assert [slot.start for slot in derive_bookable_slots(db, doctor.id, FUTURE_MONDAY)] == [time(9, 0)]


def test_whole_day_exception_blocks_every_slot(db, doctor, monday_template) -> None:
    db.add(_template(doctor_id=doctor.id, start_time=time(13, 0), end_time=time(17, 0), duration_minutes=60))
    db.add(UnavailableDate(doctor_id=doctor.id, unavailable_date=FUTURE_MONDAY, reason='Conference'))
    db.commit()

    assert derive_bookable_slots(db, doctor.id, FUTURE_MONDAY) == []


def test_partial_exception_removes_only_intersecting_slots(db, doctor) -> None:
    db.add(_template(doctor_id=doctor.id, start_time=time(9, 0), end_time=time(11, 0), duration_minutes=30))
    db.add(
        UnavailableDate(
            doctor_id=doctor.id,
            unavailable_date=FUTURE_MONDAY,
            start_time=time(9, 15),
            end_time=time(9, 45),
        )
    )
    db.commit()

    slots = derive_bookable_slots(db, doctor.id, FUTURE_MONDAY)

    assert [slot.start for slot in slots] == [time(10, 0), time(10, 30)]


def test_exception_on_other_date_is_ignored(db, doctor, monday_template) -> None:
    db.add(UnavailableDate(doctor_id=doctor.id, unavailable_date=date(2030, 1, 14)))
    db.commit()

    assert len(derive_bookable_slots(db, doctor.id, FUTURE_MONDAY)) == 2


def test_derive_bookable_slots_merges_templates_in_start_order(db, doctor) -> None:
    db.add(_template(doctor_id=doctor.id, start_time=time(14, 0), end_time=time(15, 0), duration_minutes=60))
    db.add(_template(doctor_id=doctor.id, start_time=time(8, 0), end_time=time(9, 0), duration_minutes=30))
    db.commit()

    slots = derive_bookable_slots(db, doctor.id, FUTURE_MONDAY)

    assert [slot.start for slot in slots] == [time(8, 0), time(8, 30), time(14, 0)]
    assert slots[-1].end == time(15, 0)


def test_derive_bookable_slots_drops_slots_already_started(db, doctor, monday_template) -> None:
    now = datetime.combine(FUTURE_MONDAY, time(9, 10))

    assert derive_bookable_slots(db, doctor.id, FUTURE_MONDAY, now=now) == [TimeSlot(time(9, 30), time(10, 0))]


def test_create_template_persists_window(db, doctor) -> None:
    request = AvailabilityTemplateRequest(day_of_week=3, start_time='08:00:30', end_time='12:00', duration_minutes=45)

    template = create_template(request, current_user=doctor, db=db)

    assert template.id is not None
    assert template.doctor_id == doctor.id
    assert template.start_time == time(8, 0)
    assert template.duration_minutes == 45


def test_create_template_rejects_overlapping_window(db, doctor, monday_template) -> None:
    request = AvailabilityTemplateRequest(day_of_week=1, start_time='09:30', end_time='11:00')

    with pytest.raises(ConflictError):
        create_template(request, current_user=doctor, db=db)

    assert db.query(DoctorAvailability).count() == 1


def test_update_template_can_move_window_within_itself(db, doctor, monday_template) -> None:
    request = AvailabilityTemplateRequest(day_of_week=1, start_time='09:30', end_time='11:00', duration_minutes=15)

    template = update_template(monday_template.id, request, current_user=doctor, db=db)

    assert template.start_time == time(9, 30)
    assert template.end_time == time(11, 0)
    assert template.duration_minutes == 15


def test_update_template_rejects_other_doctors_window(db, make_user, monday_template) -> None:
    other_doctor = make_user('doctor')
    request = AvailabilityTemplateRequest(day_of_week=1, start_time='09:00', end_time='10:00')

    with pytest.raises(NotFound) as exception_info:
        update_template(monday_template.id, request, current_user=other_doctor, db=db)

    assert exception_info.value.detail == 'Availability window not found.'


def test_add_and_delete_unavailable_exception(db, doctor) -> None:
    request = UnavailableDateRequest(unavailable_date=FUTURE_MONDAY, reason='  Vacation  ')

    exception = add_unavailable_exception(request, current_user=doctor, db=db)

    assert exception.reason == 'Vacation'
    assert exception.blocks_whole_day

    delete_unavailable_exception(exception.id, current_user=doctor, db=db)

    assert db.query(UnavailableDate).count() == 0


def test_add_unavailable_exception_rejects_half_open_bounds(db, doctor) -> None:
    request = UnavailableDateRequest(unavailable_date=FUTURE_MONDAY, start_time='09:00')

    with pytest.raises(ValidationError):
        add_unavailable_exception(request, current_user=doctor, db=db)


def test_list_bookable_slots_returns_display_labels(db, doctor, patient, monday_template) -> None:
    slots = list_bookable_slots(doctor.id, slot_date=FUTURE_MONDAY, current_user=patient, db=db)

    assert [slot.display_time for slot in slots] == ['9:00 AM', '9:30 AM']
    assert all(slot.duration_minutes == 30 for slot in slots)


def test_list_bookable_slots_rejects_unknown_doctor(db, patient) -> None:
    with pytest.raises(NotFound):
        list_bookable_slots('missing', slot_date=FUTURE_MONDAY, current_user=patient, db=db)
