"""Durable task queues backed by the jobflow SQLite database.

Why not Celery / RQ / BullMQ-style brokers?
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
Every side effect of a job status change (notification tasks, chained
auto-assignment) must be committed in the same transaction as the status
write itself. Keeping the queue in the same SQLite file as the jobs turns
that into one local transaction instead of an outbox relay to an external
broker. Claims, acks, and nacks are conditional updates, so delivery is
at-least-once with exclusive leases.
"""
