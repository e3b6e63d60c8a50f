"""
Durable Job Queue

A database-backed job queue with an atomic claim protocol, exponential-backoff
retries, lease-based crash recovery and a supervised pool of workers.
"""

__version__ = "1.0.0"
