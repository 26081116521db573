"""Taskroom — collaborative project and task tracker.

Projects, tasks, and threaded comments over a REST API, with a
room-based WebSocket layer that pushes every mutation to the clients
watching the affected project or task.
"""

__version__ = "0.1.0"
