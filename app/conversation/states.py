"""
Conversation Stage Definitions

Stages are informational: they label where a session is in the sales flow
and are echoed in outbound messages, but no transition table constrains them.
"""
from enum import Enum


class Stage(str, Enum):
    """Coarse stage of a chat session"""

    WELCOME = "WELCOME"
    BROWSING = "BROWSING"
    ORDERING = "ORDERING"
    ORDER_PLACED = "ORDER_PLACED"
    ORDER_CANCELLED = "ORDER_CANCELLED"

    # Sessions created by webhook channels
    FB = "FB"
    ZAPIER = "ZAPIER"


class Who(str, Enum):
    """Author of a logged message"""

    USER = "user"
    BOT = "bot"


# Marker stored as the text of an image turn
ATTACHMENT_PREFIX = "ATTACHMENT::"
