"""
Helpdesk Triage
===============

Automated ticket triage for the helpdesk: category prediction, knowledge
base retrieval, reply drafting, confidence scoring and the auto-close
decision, with an auditable trace of every run.
"""

__version__ = "1.0.0"
