"""Command/response synchronization layer for GRBL devices."""
