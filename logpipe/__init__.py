"""Pipe line-oriented log output from stdin to journald and/or rotated files."""

__version__ = "0.1.0"
