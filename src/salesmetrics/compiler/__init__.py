"""Request to SQL compilation."""
