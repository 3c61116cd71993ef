"""Routing — mapping facade paths onto the owning source."""
