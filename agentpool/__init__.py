"""Worker-agent pool with tracker synchronization."""

__version__ = "0.1.0"
