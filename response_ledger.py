from typing import Dict, Any, List, Optional, Set, Iterable
import logging

from error_handler import ErrorHandler, OperationResult
from models import Response
from storage_manager import StorageManager


class SummaryBreakdown:
    """Who submitted and who is missing for one channel and day"""

    def __init__(self, submitted: List[Response], missing: List[str]):
        self.submitted = submitted
        self.missing = missing

    @property
    def submitted_ids(self) -> List[str]:
        return [response.participant_id for response in self.submitted]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'submitted': [response.to_dict() for response in self.submitted],
            'missing': list(self.missing)
        }


class ResponseLedger:
    """
    Records who has submitted for a channel-day and computes who is missing.

    Lookups are keyed by (channel, date), never by session id, so a response
    is counted even if it was stored under a different session id.
    """

    def __init__(self, storage_manager: StorageManager, error_handler: Optional[ErrorHandler] = None):
        self.storage = storage_manager
        self.error_handler = error_handler or ErrorHandler()
        self.logger = logging.getLogger('standup_bot.response_ledger')

    def record_response(self, response: Response) -> None:
        """Upsert a participant's response; a later submission replaces the earlier one."""
        self.storage.save_response(response)
        self.logger.info(
            f"Recorded response from {response.participant_id} for {response.channel_id} on {response.date}"
        )

    def list_responses(self, channel_id: str, date: str) -> List[Response]:
        return self.storage.list_responses(channel_id, date)

    def missing_participants(self, channel_id: str, date: str, roster: Iterable[str]) -> Set[str]:
        """
        Get roster members who haven't responded on a specific date.

        Args:
            channel_id: The channel ID
            date: The date in format 'YYYY-MM-DD'
            roster: Participant IDs required to respond

        Returns:
            roster minus the participants that have a response
        """
        respondents = {response.participant_id for response in self.list_responses(channel_id, date)}
        return {str(participant) for participant in roster} - respondents

    def increment_reminder_count(self, channel_id: str, date: str, participant_id: str) -> OperationResult:
        """
        Best-effort bump of a participant's reminder counter.

        The reminder has already been delivered when this runs, so a failure
        is logged and reported but never raised.
        """
        return self.error_handler.best_effort(
            self.storage.increment_reminder_count, channel_id, date, participant_id,
            context=f"Failed to increment reminder count for {participant_id} in {channel_id}"
        )

    def breakdown(self, channel_id: str, date: str, roster: Iterable[str]) -> SummaryBreakdown:
        """
        Split a day's responses into submitted and missing for the summary.

        Submitted responses come in roster order followed by any respondents
        that are not on the roster; missing IDs keep roster order.
        """
        roster = [str(participant) for participant in roster]
        by_participant = {response.participant_id: response for response in self.list_responses(channel_id, date)}

        submitted = [by_participant[p] for p in roster if p in by_participant]
        submitted += [r for p, r in by_participant.items() if p not in set(roster)]
        missing = [p for p in roster if p not in by_participant]

        return SummaryBreakdown(submitted, missing)
