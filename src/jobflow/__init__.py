"""Job lifecycle orchestration and asynchronous task pipeline for a task marketplace."""

__version__ = "0.1.0"
