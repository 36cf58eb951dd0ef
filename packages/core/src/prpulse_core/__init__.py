"""Incremental GitHub history reconciliation for the prpulse dashboard."""
