"""
Triage Module
=============

Bounded Context for automated first-pass handling of new tickets.

Responsibilities:
- Predict the ticket category
- Retrieve relevant knowledge base articles
- Draft a reply and score confidence in it
- Decide whether the ticket may be closed without a human
- Audit every step under one trace ID
"""

__version__ = "1.0.0"
