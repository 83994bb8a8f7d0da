import datetime

import pytest
import pytz

from error_handler import ConflictError
from models import ReminderRecord, Response, Session, SessionStatus
from storage_manager import ChannelRow, StorageManager
from time_window import Weekday


def test_schedule_round_trip_keeps_weekdays(store, make_schedule):
    store.save_channel_schedule(make_schedule(topic='Standup', holiday_country='DE'))

    loaded = store.get_channel_schedule('C1')

    assert loaded.active_days == make_schedule().active_days
    assert loaded.topic == 'Standup'
    assert loaded.holiday_country == 'DE'
    assert loaded.participant_names['101'] == 'Alice'


def test_schedule_update_replaces_fields(store, make_schedule):
    store.save_channel_schedule(make_schedule())
    store.save_channel_schedule(make_schedule(summary_time='10:00', active_days={Weekday.MONDAY}))

    loaded = store.get_channel_schedule('C1')
    assert loaded.summary_time == '10:00'
    assert loaded.active_days == {Weekday.MONDAY}


def test_malformed_schedule_is_left_out_of_listing(store, make_schedule):
    store.save_channel_schedule(make_schedule('C1'))
    store.save_channel_schedule(make_schedule('C2'))

    with store._session_scope() as session:
        session.get(ChannelRow, 'C2').active_days = ['Mon', 'Someday']

    assert [s.channel_id for s in store.list_active_channel_schedules()] == ['C1']


def test_get_response_includes_reminder_count(store):
    store.save_response(Response('s-1', 'C1', '2024-03-04', '101', {'q': 'a'}))
    store.increment_reminder_count('C1', '2024-03-04', '101')

    response = store.get_response('C1', '2024-03-04', '101')

    assert response.reminder_count == 1
    assert response.submitted_at.tzinfo is not None
    assert store.get_response('C1', '2024-03-04', '102') is None


def test_duplicate_reminder_record_conflicts(store):
    record = ReminderRecord('C1', '2024-03-04', '09:00', '101')
    store.save_reminder_record(record)

    with pytest.raises(ConflictError):
        store.save_reminder_record(record)


def test_cleanup_old_data(store):
    old, recent = '2023-11-01', '2024-03-01'
    for date in (old, recent):
        store.create_session(Session(f"s-{date}", 'C1', date, SessionStatus.COMPLETED))
        store.save_response(Response(f"s-{date}", 'C1', date, '101', {'q': 'a'}))
        store.increment_reminder_count('C1', date, '102')
        store.save_reminder_record(ReminderRecord('C1', date, '09:00', '102'))

    deleted = store.cleanup_old_data(days_to_keep=90, today=datetime.date(2024, 3, 4))

    assert deleted == {
        'standup_sessions': 1,
        'standup_responses': 1,
        'reminder_counts': 1,
        'reminder_records': 1,
    }
    assert store.get_session('C1', old) is None
    assert store.get_session('C1', recent) is not None


def test_database_directory_is_created(tmp_path):
    path = tmp_path / 'nested' / 'dir' / 'standup.db'
    storage = StorageManager(f"sqlite:///{path}")
    storage.init_db()
    try:
        assert path.parent.exists()
        assert storage.get_session('C1', '2024-03-04') is None
    finally:
        storage.close()


def test_datetimes_come_back_in_utc(store):
    created = pytz.timezone('Asia/Tokyo').localize(datetime.datetime(2024, 3, 4, 9, 0))
    store.create_session(Session('s-1', 'C1', '2024-03-04', created_at=created))

    session = store.get_session('C1', '2024-03-04')

    assert session.created_at == created
    assert session.created_at.utcoffset() == datetime.timedelta(0)
