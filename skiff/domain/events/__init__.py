"""
Domain Events Package

Architectural Intent:
- Contains the domain event base class
- Job lifecycle events live next to the Job aggregate that raises them
"""

from skiff.domain.events.event_base import DomainEvent

__all__ = ["DomainEvent"]
