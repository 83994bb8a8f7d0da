from typing import Dict, Any, List

from models import ChannelSchedule, Response
from time_window import localize_now


class _SafeDict(dict):
    """Leaves unknown placeholders untouched instead of raising KeyError"""

    def __missing__(self, key):
        return '{' + key + '}'


def render(template: str, **values) -> str:
    return template.format_map(_SafeDict(values))


class Templates:
    """
    Contains templates for the messages sent by the scheduler.
    Per-channel overrides come from ChannelSchedule.templates.
    """

    def reminder_message(self, schedule: ChannelSchedule, context: Dict[str, Any]) -> str:
        """Private reminder sent to a participant who hasn't responded"""
        greeting = render(
            schedule.templates['reminder'],
            user_name=context.get('user_name', ''),
            channel_name=schedule.channel_name
        )
        return f"""
🔔 {greeting}

Please submit your update before the summary is posted at **{schedule.summary_time}** ({schedule.timezone}).
"""

    def response_message(self, schedule: ChannelSchedule, response: Response,
                         context: Dict[str, Any]) -> str:
        """One participant's answers, posted to the channel as they arrive"""
        name = response.participant_name or schedule.participant_name(response.participant_id)
        lines = [f"📝 **{name}** submitted their standup for {context.get('date', response.date)}", ""]
        for question in schedule.questions:
            answer = response.answers.get(question)
            if answer:
                lines.append(f"* **{question}** {answer}")
        return "\n".join(lines) + "\n"

    def summary_message(self, schedule: ChannelSchedule, submitted: List[Response],
                        missing: List[str], context: Dict[str, Any]) -> str:
        """Daily summary posted to the channel"""
        date = context.get('date', '')
        header = render(schedule.templates['summary_header'], date=date, channel_name=schedule.channel_name)
        total = len(submitted) + len(missing)

        lines = [f"## {header}", "", f"**{len(submitted)}/{total}** participants submitted their update.", ""]

        for response in submitted:
            submitted_at = ''
            if response.submitted_at:
                submitted_at = localize_now(response.submitted_at, schedule.timezone).strftime('%I:%M %p')
            name = response.participant_name or schedule.participant_name(response.participant_id)
            lines.append("✅ " + render(schedule.templates['user_completed'], user_name=name, time=submitted_at))
            for question in schedule.questions:
                answer = response.answers.get(question)
                if answer:
                    lines.append(f"  * **{question}** {answer}")

        if missing:
            lines.append("")
            for participant_id in missing:
                name = schedule.participant_name(participant_id)
                lines.append("❌ " + render(schedule.templates['user_missing'], user_name=name))

        if not submitted:
            lines.append("")
            lines.append("📭 No standup responses were received today.")

        return "\n".join(lines) + "\n"
