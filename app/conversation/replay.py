"""
Reconnection & History Replay

Decides what a (re)connecting client receives: a greeting for a brand-new
session, otherwise every logged message newer than the client's watermark.
"""
from dataclasses import dataclass, field

from app.conversation.session import ChatMessage, ChatSession


@dataclass
class ReplayPlan:
    """What to send on connect"""
    greet: bool
    history: list[ChatMessage] = field(default_factory=list)

    def history_payload(self) -> list[dict]:
        return [m.to_dict() for m in self.history]


def parse_last_ts(raw: object) -> int:
    """Client watermark; anything missing or malformed means "replay everything" """
    if raw is None or raw == "":
        return 0
    try:
        value = int(float(raw))
    except (TypeError, ValueError, OverflowError):
        return 0
    return max(0, value)


def plan_replay(session: ChatSession, created: bool, last_ts: int | None) -> ReplayPlan:
    """
    Build the replay for a connection.

    Read-only apart from the reconnect counter: calling it twice with the same
    watermark yields the same history.
    """
    if created and not session.messages:
        return ReplayPlan(greet=True)

    session.reconnects += 1
    return ReplayPlan(greet=False, history=session.messages_after(last_ts))
