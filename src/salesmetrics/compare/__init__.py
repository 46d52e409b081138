"""Compare mode: session linking, attribution and per-entity metrics."""
