"""Prometheus-style metric samples read from MongoDB servers and mongos routers."""

__version__ = "0.1.0"