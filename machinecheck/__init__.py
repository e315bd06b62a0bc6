"""Decoding of x86 machine checks, memory error accounting, triggers and a query server."""

__version__ = "0.1.0"