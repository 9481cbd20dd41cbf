"""
Retail Kernel - Transaction & Payment Integrity Engine

A library for point-of-sale integrity with:
- Cent-exact tax breakdowns
- Concurrency-safe transaction, batch and serial numbering
- Atomic sales and refunds with refund lineage
- Cash drawer reconciliation with manager approval gating
"""

__version__ = "0.1.0"
