"""A server-rendered web console with pluggable components."""

__version__ = "0.1.0"
