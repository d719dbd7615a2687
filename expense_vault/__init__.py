"""
Expense Vault - Source Package

Decision logic for an expense-tracking product with personal/organizational
"vault" separation and manager approval workflows.

DESIGN PRINCIPLES:
1. An expense only moves along legal transitions
2. Every mutation leaves an audit entry; the trail is never rewritten
3. Personal vault expenses stay invisible to organizations
4. Fail loudly on inconsistent line items, never auto-correct
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Expense Vault Team"
