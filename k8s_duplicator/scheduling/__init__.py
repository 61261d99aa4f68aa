"""
Scheduling - Work queue, controller threads and leader election.

``leader`` imports the Kubernetes leader election client and is not
re-exported here; import it directly where needed.
"""

from .controller import Controller
from .workqueue import WorkQueue

__all__ = [
    "Controller",
    "WorkQueue",
]
