"""Toki: passive desktop time tracking attributed to projects and issues."""

__version__ = "0.1.0"
