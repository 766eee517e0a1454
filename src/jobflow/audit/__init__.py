"""Append-only audit trail of money and job-state changes."""
