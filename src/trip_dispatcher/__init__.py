"""Trip dispatcher: passenger and driver trip lifecycle over a chat channel."""

__version__ = "0.1.0"
