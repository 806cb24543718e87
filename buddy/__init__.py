"""Buddy — streaming chat companion for wellness journaling."""

__version__ = "0.1.0"
