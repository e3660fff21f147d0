"""
fkslice - Sample referentially-consistent database subsets.

Draws a seeded, budget-capped sample of rows from every table and pulls in
the rows their foreign keys reference, so the subset can be loaded elsewhere
without violating FK constraints.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
