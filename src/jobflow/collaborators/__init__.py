"""External collaborators: job analysis, context retrieval, notification delivery."""
