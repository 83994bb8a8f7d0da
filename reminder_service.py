from typing import List, Optional, Set, Iterable
import logging

from error_handler import ConflictError, ErrorHandler, OperationResult
from models import ReminderRecord
from storage_manager import StorageManager


class ReminderService:
    """
    Deduplicates reminder sends for a (channel, date, trigger time).

    This is a list-and-check against stored reminder records, not an atomic
    claim: two truly concurrent ticks can both pass the check. Records are
    kept per participant, so a partially failed batch is completed on the
    next tick without nudging anyone who was already reminded.
    """

    def __init__(self, storage_manager: StorageManager, error_handler: Optional[ErrorHandler] = None):
        """
        Initialize the ReminderService

        Args:
            storage_manager: The storage manager instance for reminder records
            error_handler: Handler used for best-effort record keeping
        """
        self.storage_manager = storage_manager
        self.error_handler = error_handler or ErrorHandler()
        self.logger = logging.getLogger('standup_bot.reminder_service')

    def _records_for(self, channel_id: str, date: str, trigger_time: str) -> List[ReminderRecord]:
        return [
            record for record in self.storage_manager.list_reminder_records(channel_id, date)
            if record.trigger_time == trigger_time
        ]

    def has_sent_reminder_batch(self, channel_id: str, date: str, trigger_time: str) -> bool:
        """
        Check if any reminder was already sent for this trigger time today

        Args:
            channel_id: The channel ID
            date: The channel-local date in format 'YYYY-MM-DD'
            trigger_time: The reminder time in format 'HH:MM'
        """
        return bool(self._records_for(channel_id, date, trigger_time))

    def reminded_participants(self, channel_id: str, date: str, trigger_time: str) -> Set[str]:
        """Participants that already have a record for this trigger time"""
        return {record.participant_id for record in self._records_for(channel_id, date, trigger_time)}

    def pending_recipients(self, channel_id: str, date: str, trigger_time: str,
                           missing: Iterable[str]) -> List[str]:
        """
        Filter missing participants down to those not yet reminded for this trigger.

        Returns:
            Participant IDs in sorted order
        """
        already = self.reminded_participants(channel_id, date, trigger_time)
        return sorted(str(p) for p in missing if str(p) not in already)

    def record_reminder(self, record: ReminderRecord) -> OperationResult:
        """
        Save a reminder record after the reminder went out.

        Best-effort: failures are logged and returned, never raised. A record
        that already exists (a concurrent tick got there first) is a success.
        """
        def _save() -> bool:
            try:
                self.storage_manager.save_reminder_record(record)
            except ConflictError:
                self.logger.info(
                    f"Reminder for {record.participant_id} in {record.channel_id} "
                    f"at {record.trigger_time} was already recorded"
                )
                return False
            return True

        return self.error_handler.best_effort(
            _save,
            context=f"Failed to save reminder record for {record.participant_id} in {record.channel_id}"
        )
