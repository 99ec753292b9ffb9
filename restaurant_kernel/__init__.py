"""
Restaurant Kernel

The shared core of the restaurant POS back office:
- Immutable domain entities (menu, inventory, prep, sales, customers, shifts)
- Unit normalization and conversion
- Append-only, hash-chained audit trail
- Structured JSON logging and typed errors
"""

__version__ = "0.1.0"
