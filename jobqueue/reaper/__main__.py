"""Run the lease reaper: python -m jobqueue.reaper"""

from jobqueue.reaper.main import run

run()
