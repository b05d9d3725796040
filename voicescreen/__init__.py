"""Voice screening call lifecycle and reconciliation engine."""
