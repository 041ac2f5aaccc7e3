"""Core infrastructure shared by every agentspace component."""
