"""Ticket automation rule engine and service."""

from .automation import RuleDefinition, TicketSnapshot, TriggerDispatcher

__all__ = [
    "__version__",
    "RuleDefinition",
    "TicketSnapshot",
    "TriggerDispatcher",
]

__version__ = "0.1.0"
