"""Ambient services: logging, metrics and tracing."""
