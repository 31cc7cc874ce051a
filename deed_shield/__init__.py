"""
Deed Shield — tamper-evident verification receipts for deed-recording bundles.

Architecture: Trust registry + seal → Policy heuristics → External verifiers → Decision → Receipt
Philosophy:  Every decision is data. Every receipt re-derives from its inputs.
"""

__version__ = "1.0.0"
