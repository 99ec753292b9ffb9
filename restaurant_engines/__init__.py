"""
Module: restaurant_engines
Responsibility:
    Pure calculation engines for the restaurant back office: recipe costing,
    stock deductions and availability, customer segmentation and loyalty,
    invoice numbering, shift reconciliation, rule-based task generation,
    data health checks, P&L reporting and the daily brief.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import restaurant_kernel.  MUST NOT import restaurant_services.

Invariants enforced:
    - Purity: engines never read the clock.  ``now`` is always a parameter.
    - Decimal-only arithmetic for money and stock quantities.
    - Determinism: identical inputs always produce identical outputs.

Audit relevance:
    Top-level engine entry points are wrapped with ``@traced_engine`` and emit
    RESTAURANT_ENGINE_TRACE log records.
"""
