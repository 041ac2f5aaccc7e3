"""agentspace - isolated multi-repository workspaces for concurrent agent sessions."""

__version__ = "0.3.0"
