"""
Chat-platform side of the scheduler: delivering reminders and summaries.
"""

import logging
from typing import Dict, Any, List, Optional

import zulip

from error_handler import NotifierError
from models import ChannelSchedule, Response
from templates import Templates

DEFAULT_TIMEOUT = 10  # seconds


class Notifier:
    """
    Interface the scheduler uses to reach participants and channels.
    The scheduler passes structured data; rendering is the notifier's job.
    """

    def send_reminder(self, participant_id: str, schedule: ChannelSchedule,
                      context: Dict[str, Any]) -> Optional[str]:
        """
        Send a reminder to one participant.

        Returns:
            A reference to the sent message
        """
        raise NotImplementedError

    def post_summary(self, schedule: ChannelSchedule, submitted: List[Response],
                     missing: List[str], context: Dict[str, Any]) -> None:
        """Post the daily summary to the channel."""
        raise NotImplementedError

    def post_response(self, schedule: ChannelSchedule, response: Response,
                      context: Dict[str, Any]) -> None:
        """Post a single submitted response to the channel's standup topic."""
        raise NotImplementedError


class ZulipNotifier(Notifier):
    """Notifier backed by the Zulip API: private messages for reminders, stream messages for summaries"""

    def __init__(self, client: zulip.Client, templates: Optional[Templates] = None,
                 timeout: float = DEFAULT_TIMEOUT):
        self.client = client
        self.templates = templates or Templates()
        self.timeout = timeout
        self.logger = logging.getLogger('standup_bot.notifier')

    @classmethod
    def from_config(cls, config) -> 'ZulipNotifier':
        client = zulip.Client(**config.get_zulip_config())
        return cls(client, timeout=config.notifier_timeout)

    def _send(self, message: Dict[str, Any]) -> Dict[str, Any]:
        try:
            result = self.client.call_endpoint(
                url='messages', method='POST', request=message, timeout=self.timeout
            )
        except Exception as e:
            raise NotifierError(f"Zulip request failed: {e}") from e

        if result.get('result') != 'success':
            raise NotifierError(f"Zulip rejected message: {result.get('msg', 'unknown error')}")
        return result

    def _user_name(self, participant_id: str, schedule: ChannelSchedule) -> str:
        if participant_id in schedule.participant_names:
            return schedule.participant_names[participant_id]
        if not participant_id.isdigit():
            return participant_id

        try:
            result = self.client.get_user_by_id(int(participant_id))
        except Exception as e:
            self.logger.warning(f"Could not look up user {participant_id}: {e}")
            return participant_id
        if result.get('result') == 'success':
            return result['user'].get('full_name', participant_id)
        return participant_id

    def send_reminder(self, participant_id: str, schedule: ChannelSchedule,
                      context: Dict[str, Any]) -> Optional[str]:
        context = dict(context)
        context.setdefault('user_name', self._user_name(participant_id, schedule))

        recipient = int(participant_id) if participant_id.isdigit() else participant_id
        result = self._send({
            'type': 'private',
            'to': [recipient],
            'content': self.templates.reminder_message(schedule, context)
        })
        return str(result.get('id')) if result.get('id') is not None else None

    def post_summary(self, schedule: ChannelSchedule, submitted: List[Response],
                     missing: List[str], context: Dict[str, Any]) -> None:
        self._send({
            'type': 'stream',
            'to': schedule.channel_name,
            'topic': f"{schedule.topic} - {context.get('date', '')}",
            'content': self.templates.summary_message(schedule, submitted, missing, context)
        })

    def post_response(self, schedule: ChannelSchedule, response: Response,
                      context: Dict[str, Any]) -> None:
        self._send({
            'type': 'stream',
            'to': schedule.channel_name,
            'topic': f"{schedule.topic} - {context.get('date', response.date)}",
            'content': self.templates.response_message(schedule, response, context)
        })
