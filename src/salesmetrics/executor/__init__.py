"""Query execution backends."""
