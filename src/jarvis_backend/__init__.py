"""Conversational assistant backend for the Jarvis 3D avatar."""

__version__ = "0.1.0"
