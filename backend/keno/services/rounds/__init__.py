"""Keno round services: paytable, draw selection, reveal pacing,
settlement and the round engine that drives them.

HTTP routes and socket handlers import from here; nothing in this package
knows about request handling.
"""
