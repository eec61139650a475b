"""Reviewgate - review-gate workflow engine.

This package sequences a change through mandatory implementation and review
stages, records stage outcomes and findings, and blocks committing the
change until every required stage has passed and no Critical or High
finding remains open.
"""

__version__ = "0.1.0"
