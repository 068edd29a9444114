"""
Helpdesk SLA Engine
===================

Ticket lifecycle state machine and SLA timer engine for an IT helpdesk.
"""

__version__ = "1.0.0"
