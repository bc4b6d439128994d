from src.conversation.engine import BookingConversationEngine
from src.conversation.slot_manager import SlotManager, StepDefinition
from src.conversation.state_machine import ConversationState, SessionRegistry

__all__ = [
    "BookingConversationEngine",
    "ConversationState",
    "SessionRegistry",
    "SlotManager",
    "StepDefinition",
]
