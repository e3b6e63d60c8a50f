"""
Worker module.
Contains the retry policy, job executor, worker loop and worker pool.
"""

from jobqueue.worker.executor import JobExecutor
from jobqueue.worker.main import Worker
from jobqueue.worker.pool import WorkerPool, run

__all__ = ["JobExecutor", "Worker", "WorkerPool", "run"]
