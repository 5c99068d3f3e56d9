"""
Bank notification sync: parse card and transfer alerts and reconcile them
with a YNAB budget.
"""

__version__ = "0.1.0"
