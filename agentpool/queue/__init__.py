"""Execution dispatch queue."""

from agentpool.queue.dispatch_queue import DispatchQueue

__all__ = ["DispatchQueue"]
