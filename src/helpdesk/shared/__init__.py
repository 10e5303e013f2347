"""
Shared Kernel Module
====================

Generic infrastructure used across the helpdesk bounded contexts.

DO NOT add triage business logic to the shared kernel.
"""

__version__ = "1.0.0"
