"""Run the worker pool: python -m jobqueue.worker"""

from jobqueue.worker.pool import run

run()
