"""Persistence for the prpulse history snapshot."""
