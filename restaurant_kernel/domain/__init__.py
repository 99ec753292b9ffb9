"""Pure domain layer: entities, units, money rounding, clock and audit trail."""
