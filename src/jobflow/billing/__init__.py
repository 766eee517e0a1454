"""Credit pricing and balance arithmetic."""
