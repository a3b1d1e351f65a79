"""
Project Tracker - Source Package

Core of a budget/project tracking system: breakdown line items roll up
into parent projects, ad-hoc subtotals are computed by a generic
aggregation engine, and every mutation is written to an activity log.

DESIGN PRINCIPLES:
1. Rollups are always re-derived from children, never edited by hand
2. Auditing never breaks the operation being audited
3. A failed recalculation is reported, never hidden
4. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Project Tracker Team"
