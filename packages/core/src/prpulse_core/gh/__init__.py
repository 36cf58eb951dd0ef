"""GitHub upstream access."""
