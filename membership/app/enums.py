from enum import Enum


class Provider(str, Enum):
    """External commerce providers a purchase can be routed to."""

    CARD_PROCESSOR = "stripe"
    MARKETPLACE = "whop"
