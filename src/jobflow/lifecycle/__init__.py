"""Job lifecycle: status authority, persistence, and request-path service."""
