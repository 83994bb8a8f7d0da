"""
Loading and validating channel schedules.

Schedules live in an INI file with one section per channel:

    [channel:42]
    name = engineering
    timezone = America/New_York
    summary_time = 09:00
    reminder_times = 08:30, 08:50
    active_days = Mon, Tue, Wed, Thu, Fri
    participants = 101, 102, 103
    participant_names = 101: Alice, 102: Bob, 103: Charlie
    questions =
        What did you work on yesterday?
        What are you working on today?
        Any blockers or concerns?

A schedule that fails validation is rejected here, before the scheduler
ever evaluates it.
"""

import re
import logging
import configparser
from typing import Dict, List

from error_handler import ScheduleConfigError
from models import ChannelSchedule
from storage_manager import StorageManager
from time_window import Weekday, minutes_of_day, resolve_timezone

SECTION_PREFIX = 'channel:'
TIME_FORMAT = re.compile(r'^([01]\d|2[0-3]):([0-5]\d)$')
TEMPLATE_KEYS = {
    'reminder_template': 'reminder',
    'summary_header': 'summary_header',
    'user_completed_template': 'user_completed',
    'user_missing_template': 'user_missing',
}

logger = logging.getLogger('standup_bot.channel_config')


def _is_valid_time(time_str: str) -> bool:
    """Validate time format (HH:MM)."""
    return bool(TIME_FORMAT.match(time_str or ''))


def validate_channel_schedule(schedule: ChannelSchedule) -> None:
    """
    Validate a channel schedule.

    Raises:
        ScheduleConfigError: describing the first problem found
    """
    prefix = f"channel {schedule.channel_id}"

    if not schedule.channel_id:
        raise ScheduleConfigError("channel ID is required")

    if resolve_timezone(schedule.timezone) is None:
        raise ScheduleConfigError(f"{prefix}: unknown timezone {schedule.timezone!r}")

    if not _is_valid_time(schedule.summary_time):
        raise ScheduleConfigError(f"{prefix}: invalid summary time {schedule.summary_time!r}")

    summary_minutes = minutes_of_day(schedule.summary_time)
    seen_times = set()
    for reminder_time in schedule.reminder_times:
        if not _is_valid_time(reminder_time):
            raise ScheduleConfigError(f"{prefix}: invalid reminder time {reminder_time!r}")
        if minutes_of_day(reminder_time) >= summary_minutes:
            raise ScheduleConfigError(
                f"{prefix}: reminder time {reminder_time} must be before summary time {schedule.summary_time}"
            )
        if reminder_time in seen_times:
            raise ScheduleConfigError(f"{prefix}: duplicate reminder time {reminder_time}")
        seen_times.add(reminder_time)

    if not schedule.active_days:
        raise ScheduleConfigError(f"{prefix}: at least one active day is required")

    if not schedule.participants:
        raise ScheduleConfigError(f"{prefix}: at least one participant must be configured")

    if len(set(schedule.participants)) != len(schedule.participants):
        raise ScheduleConfigError(f"{prefix}: duplicate participant IDs")

    if not schedule.questions:
        raise ScheduleConfigError(f"{prefix}: at least one question is required")


def _split_list(value: str) -> List[str]:
    return [item.strip() for item in re.split(r'[,\n]', value or '') if item.strip()]


def _parse_names(value: str) -> Dict[str, str]:
    names = {}
    for item in _split_list(value):
        if ':' not in item:
            raise ScheduleConfigError(f"participant name entry {item!r} must look like 'id: name'")
        participant_id, name = item.split(':', 1)
        names[participant_id.strip()] = name.strip()
    return names


def parse_channel_section(channel_id: str, section: configparser.SectionProxy,
                          default_timezone: str = 'UTC') -> ChannelSchedule:
    """Build a ChannelSchedule from one INI section"""
    try:
        active_days = {Weekday.from_name(day) for day in _split_list(section.get('active_days', ''))}
    except ValueError as e:
        raise ScheduleConfigError(f"channel {channel_id}: {e}") from e

    questions = [line.strip() for line in section.get('questions', '').splitlines() if line.strip()]
    templates = {
        template_name: section[key]
        for key, template_name in TEMPLATE_KEYS.items()
        if section.get(key)
    }

    try:
        enabled = section.getboolean('enabled', True)
        post_responses = section.getboolean('post_responses', False)
    except ValueError as e:
        raise ScheduleConfigError(f"channel {channel_id}: {e}") from e

    return ChannelSchedule(
        channel_id=channel_id,
        channel_name=section.get('name', channel_id),
        timezone=section.get('timezone', default_timezone),
        summary_time=section.get('summary_time', ''),
        reminder_times=_split_list(section.get('reminder_times', '')),
        active_days=active_days,
        participants=_split_list(section.get('participants', '')),
        enabled=enabled,
        questions=questions or None,
        templates=templates,
        participant_names=_parse_names(section.get('participant_names', '')),
        topic=section.get('topic'),
        holiday_country=section.get('holiday_country'),
        post_responses=post_responses
    )


def load_channel_schedules(path: str, default_timezone: str = 'UTC') -> List[ChannelSchedule]:
    """
    Load and validate every [channel:<id>] section of an INI file.

    Raises:
        ScheduleConfigError: if the file is unreadable, a channel is declared
            twice, or any schedule is invalid
    """
    parser = configparser.ConfigParser(interpolation=None)
    try:
        read = parser.read(path, encoding='utf-8')
    except configparser.Error as e:
        raise ScheduleConfigError(f"Cannot parse channel file {path}: {e}") from e
    if not read:
        raise ScheduleConfigError(f"Channel file not found: {path}")

    schedules = []
    for section_name in parser.sections():
        if not section_name.startswith(SECTION_PREFIX):
            continue
        channel_id = section_name[len(SECTION_PREFIX):].strip()
        schedule = parse_channel_section(channel_id, parser[section_name], default_timezone)
        validate_channel_schedule(schedule)
        schedules.append(schedule)

    if not schedules:
        raise ScheduleConfigError(f"No [channel:<id>] sections found in {path}")

    logger.info(f"Loaded {len(schedules)} channel schedules from {path}")
    return schedules


def sync_channel_schedules(storage_manager: StorageManager, schedules: List[ChannelSchedule]) -> int:
    """Validate and store schedules. Returns the number stored."""
    for schedule in schedules:
        validate_channel_schedule(schedule)
    for schedule in schedules:
        storage_manager.save_channel_schedule(schedule)
    return len(schedules)
