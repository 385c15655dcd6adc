"""
Database Models
"""
from autoleads.db.models.conversation_state import ConversationState
from autoleads.db.models.vehicle import Vehicle, VehicleStatus

__all__ = [
    "ConversationState",
    "Vehicle",
    "VehicleStatus",
]
