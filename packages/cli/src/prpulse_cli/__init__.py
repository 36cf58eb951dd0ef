"""Command-line interface for prpulse."""
