"""Core infrastructure: configuration, exceptions, signals, utilities."""
