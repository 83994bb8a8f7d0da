import datetime
import logging

import pytest
import pytz

from error_handler import NotFoundError, ScheduleConfigError
from models import SessionStatus
from scheduler import run_tick
from standup_manager import StandupManager

NOW = datetime.datetime(2024, 3, 4, 14, 5, tzinfo=pytz.UTC)


def test_open_standup_creates_session(store, make_schedule):
    store.save_channel_schedule(make_schedule())
    manager = StandupManager(store, clock=lambda: NOW)

    opened = manager.open_standup('C1')
    reopened = manager.open_standup('C1')

    assert opened['date'] == '2024-03-04'
    assert opened['session_id'] == reopened['session_id']
    assert opened['questions'] == make_schedule().questions


def test_open_standup_unknown_or_disabled_channel(store, make_schedule):
    store.save_channel_schedule(make_schedule('OFF', enabled=False))
    manager = StandupManager(store, clock=lambda: NOW)

    with pytest.raises(NotFoundError):
        manager.open_standup('NOPE')
    with pytest.raises(ScheduleConfigError):
        manager.open_standup('OFF')


def test_submit_response_marks_session_in_progress(store, make_schedule):
    store.save_channel_schedule(make_schedule())
    manager = StandupManager(store, clock=lambda: NOW)
    session_id = manager.open_standup('C1')['session_id']

    response = manager.submit_response('C1', '101', {'What are you working on today?': ' Reviews '})

    assert response.session_id == session_id
    assert response.participant_name == 'Alice'
    assert response.answers == {'What are you working on today?': 'Reviews'}
    assert store.get_session('C1', '2024-03-04').status == SessionStatus.IN_PROGRESS


def test_submit_response_rejects_empty_answers(store, make_schedule):
    store.save_channel_schedule(make_schedule())
    manager = StandupManager(store, clock=lambda: NOW)

    with pytest.raises(ValueError):
        manager.submit_response('C1', '101', {'q': '   '})


def test_submitted_participant_is_not_reminded(store, notifier, ctx, make_schedule):
    """The interactive path and the tick share the same session and ledger."""
    store.save_channel_schedule(make_schedule())
    manager = StandupManager(store, clock=lambda: NOW)
    manager.submit_response('C1', '103', {'What are you working on today?': 'Docs'})

    run_tick(ctx, datetime.datetime(2024, 3, 4, 14, 15, tzinfo=pytz.UTC))
    run_tick(ctx, datetime.datetime(2024, 3, 4, 14, 30, tzinfo=pytz.UTC))

    assert sorted(notifier.reminded()) == ['101', '102']
    assert notifier.summaries[0]['submitted'] == ['103']
    assert store.get_session('C1', '2024-03-04').status == SessionStatus.COMPLETED


def test_submit_response_posts_to_channel_when_enabled(store, notifier, make_schedule):
    store.save_channel_schedule(make_schedule(post_responses=True))
    store.save_channel_schedule(make_schedule('C2'))
    manager = StandupManager(store, clock=lambda: NOW, notifier=notifier)

    manager.submit_response('C1', '101', {'What are you working on today?': 'Reviews'})
    manager.submit_response('C2', '101', {'What are you working on today?': 'Reviews'})

    assert notifier.responses == [('C1', '101', '2024-03-04')]


def test_failed_response_post_keeps_submission(store, notifier, make_schedule, caplog):
    """Posting the answers to the channel is advisory; the stored response stands."""
    store.save_channel_schedule(make_schedule(post_responses=True))
    notifier.fail_responses_for.add('102')
    manager = StandupManager(store, clock=lambda: NOW, notifier=notifier)

    with caplog.at_level(logging.WARNING, logger='standup_bot.standup_manager'):
        response = manager.submit_response('C1', '102', {'What are you working on today?': 'Tests'})

    assert response.participant_id == '102'
    assert notifier.responses == []
    assert [r.participant_id for r in store.list_responses('C1', '2024-03-04')] == ['102']
    assert store.get_session('C1', '2024-03-04').status == SessionStatus.IN_PROGRESS
    assert 'Failed to post response from 102' in caplog.text
