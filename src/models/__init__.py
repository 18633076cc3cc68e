"""Database model type definitions."""

from src.models.agreement import Agreement, AgreementStatus
from src.models.calendar import CalendarEntry
from src.models.conversation import Conversation
from src.models.message import Message, MessageType
from src.models.offer import Offer, OfferStatus
from src.models.receipt import Receipt
from src.models.request import RequestStatus, ServiceRequest
from src.models.review import Review, ReviewPromptRecord

__all__ = [
    "Agreement",
    "AgreementStatus",
    "CalendarEntry",
    "Conversation",
    "Message",
    "MessageType",
    "Offer",
    "OfferStatus",
    "Receipt",
    "RequestStatus",
    "Review",
    "ReviewPromptRecord",
    "ServiceRequest",
]
