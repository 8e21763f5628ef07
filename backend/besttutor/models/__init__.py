"""SQLAlchemy models for BestTutorEver.

All models are imported here so that Base.metadata sees every table when the
schema is created. If you add a new model, import it in this file.
"""

from besttutor.models.ai_session import AISession
from besttutor.models.conversation import Conversation, Message
from besttutor.models.family import FamilySubscription, FamilySubscriptionSeat
from besttutor.models.note import CornellNote
from besttutor.models.quiz import QuizResult
from besttutor.models.subscription import Subscription
from besttutor.models.user import User

__all__ = [
    "AISession",
    "Conversation",
    "CornellNote",
    "FamilySubscription",
    "FamilySubscriptionSeat",
    "Message",
    "QuizResult",
    "Subscription",
    "User",
]
