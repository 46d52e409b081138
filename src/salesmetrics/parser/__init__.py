"""YAML catalog loading."""
