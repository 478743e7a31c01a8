"""Runnable example programs built on conduit."""
