"""
Domain layer - Pure business logic without external dependencies.
"""

from .models import CredentialHandle, DailyWindow, Recipient, SlotQuery, TimeRange
from .slot_finder import SlotFinder, compute_free_slots, format_availabilities
from .template import EmailTemplate

__all__ = [
    "CredentialHandle",
    "DailyWindow",
    "EmailTemplate",
    "Recipient",
    "SlotFinder",
    "SlotQuery",
    "TimeRange",
    "compute_free_slots",
    "format_availabilities",
]
