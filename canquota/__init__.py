"""Daily generation quota service for the can mockup generator."""

__version__ = "0.1.0"
