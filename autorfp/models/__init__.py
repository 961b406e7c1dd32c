"""Database models — re-exports all models.

Import from here:  from autorfp.models import Request, Offer, ...
Or from submodules: from autorfp.models.offers import Offer
"""

from .base import Base  # noqa: F401

# Requests & requested items
from .sourcing import Request, RequestItem, RequestStatus  # noqa: F401

# Participants & invitations
from .vendors import InvitationMapping, InviteStatus, Participant  # noqa: F401

# Email pipeline
from .pipeline import Direction, MailboxCursor, Message  # noqa: F401

# Offers
from .offers import Offer, OfferLineItem, OfferStatus  # noqa: F401
