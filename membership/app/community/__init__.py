"""Community fulfillment for paying members."""

from .service import CommunityFulfillment, InviteRef

__all__ = ["CommunityFulfillment", "InviteRef"]
