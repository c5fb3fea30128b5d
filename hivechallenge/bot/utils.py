"""
Message formatting for the Telegram notifier.
"""

from datetime import datetime
from typing import Optional

from ..challenge.notifications import ChallengeEvent, ChallengeNotification


def format_duration(seconds: int) -> str:
    """Format duration in seconds to human readable format."""
    if seconds < 60:
        return f"{seconds}s"
    elif seconds < 3600:
        minutes = seconds // 60
        remaining_seconds = seconds % 60
        if remaining_seconds > 0:
            return f"{minutes}m {remaining_seconds}s"
        return f"{minutes}m"
    else:
        hours = seconds // 3600
        remaining_minutes = (seconds % 3600) // 60
        if remaining_minutes > 0:
            return f"{hours}h {remaining_minutes}m"
        return f"{hours}h"


def describe_game(notification: ChallengeNotification) -> str:
    """Short description such as ``ranked Base+MLP``."""
    kind = "ranked" if notification.ranked else "casual"
    game_type = notification.game_type.value if notification.game_type else "Hive"
    return f"{kind} {game_type}"


def format_notification(notification: ChallengeNotification,
                        now: Optional[datetime] = None) -> str:
    """Format a lifecycle event as a chat message."""
    game = describe_game(notification)
    challenge_id = notification.challenge_id

    if notification.event == ChallengeEvent.CREATED:
        message = f"🐝 **{notification.challenger_id}** is looking for a {game} game"
        if notification.expiration_time is not None and now is not None:
            remaining = max(0, int((notification.expiration_time - now).total_seconds()))
            message += f" (expires in {format_duration(remaining)})"
        return f"{message}\n`{challenge_id}`"

    if notification.event == ChallengeEvent.ACCEPTED:
        return (
            f"⚔️ **{notification.acceptor_id}** accepted **{notification.challenger_id}**'s "
            f"{game} challenge\nGame: `{notification.game_id}`"
        )

    if notification.event == ChallengeEvent.EXPIRED:
        return f"⌛ {game} challenge by **{notification.challenger_id}** expired\n`{challenge_id}`"

    return f"❌ {game} challenge by **{notification.challenger_id}** was cancelled\n`{challenge_id}`"
