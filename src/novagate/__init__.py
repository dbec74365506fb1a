"""Novagate — supervised messaging gateway with pluggable commands."""

__version__ = "0.3.0"
