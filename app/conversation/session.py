"""
Chat Session State

In-memory per-session state kept by the registry. All mutation happens
while the session's turn lock is held.
"""
import time
from dataclasses import dataclass, field, asdict
from typing import Any

from app.conversation.states import Stage, Who


def now_ms() -> int:
    """Wall-clock epoch milliseconds"""
    return int(time.time() * 1000)


@dataclass
class ChatMessage:
    """One entry of the append-only session log"""
    who: str
    text: str
    ts: int

    def to_dict(self) -> dict[str, Any]:
        return {"who": self.who, "text": self.text, "ts": self.ts}


@dataclass
class CustomerProfile:
    """Delivery details saved as the session default after an order"""
    name: str = ""
    phone: str = ""
    address: str = ""
    district: str = ""
    upazila: str = ""
    email: str = ""

    def to_dict(self) -> dict[str, str]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "CustomerProfile | None":
        if not data:
            return None
        return cls(**{k: str(data.get(k) or "") for k in cls.__dataclass_fields__})


@dataclass
class ProductCard:
    """Compact form of a product shown to the user"""
    product_id: int
    name: str
    price: str
    image: str
    link: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class ChatSession:
    """
    Mutable state of one conversation.

    Timestamps in milliseconds share the message clock; `last_activity` is
    monotonic seconds and only drives registry eviction.
    """
    session_id: str
    stage: Stage = Stage.WELCOME
    locale: str = "bn-BD"
    last_seen_at: int = 0
    seq: int = 0
    messages: list[ChatMessage] = field(default_factory=list)
    customer: CustomerProfile | None = None
    last_products: list[ProductCard] = field(default_factory=list)
    summary: str = ""
    cool_down_until: int = 0
    last_wait_at: int = 0
    last_llm_at: int = 0
    reconnects: int = 0
    connections: int = 0
    created_at: float = field(default_factory=time.monotonic)
    last_activity: float = field(default_factory=time.monotonic)

    @property
    def last_ts(self) -> int:
        return self.messages[-1].ts if self.messages else 0

    def next_ts(self, now: int | None = None) -> int:
        """Timestamp for the next message; strictly greater than the last one"""
        current = now if now is not None else now_ms()
        return max(current, self.last_ts + 1)

    def append(self, who: Who | str, text: str, now: int | None = None) -> ChatMessage:
        """Append a message to the log and return it"""
        who_value = who.value if isinstance(who, Who) else who
        message = ChatMessage(who=who_value, text=text, ts=self.next_ts(now))
        self.messages.append(message)
        self.last_seen_at = message.ts
        return message

    def accept_user_turn(self) -> int:
        """Count an accepted user turn and return its sequence number"""
        self.seq += 1
        return self.seq

    def touch(self) -> None:
        self.last_activity = time.monotonic()

    def messages_after(self, last_ts: int | None) -> list[ChatMessage]:
        """Messages strictly newer than `last_ts` (all of them for None/0)"""
        watermark = last_ts or 0
        return [m for m in self.messages if m.ts > watermark]

    def recent_history(self, limit: int) -> list[ChatMessage]:
        if limit <= 0:
            return []
        return self.messages[-limit:]
