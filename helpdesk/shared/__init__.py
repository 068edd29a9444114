"""
Shared Kernel Module
====================

Generic infrastructure shared by the ticketing bounded context and the
runtime that hosts it.

DO NOT add ticket lifecycle or SLA business logic to the shared kernel.
"""

__version__ = "1.0.0"
