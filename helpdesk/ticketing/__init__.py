"""
Ticketing Module
================

Bounded Context for the helpdesk ticket lifecycle and its SLA clocks.

Responsibilities:
- Drive tickets through TODO / IN_PROGRESS / WAITING_VENDOR / RESOLVED / CANCELLED
- Keep the resolution and first-response clocks (start, pause, resume, re-target)
- Write the system-message audit trail for every change
- Bulk updates and ticket merges
- Periodic breach scanning
- Deliver domain events through a transactional outbox
"""

__version__ = "1.0.0"
