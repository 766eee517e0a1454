"""Task processors, one per queue."""
