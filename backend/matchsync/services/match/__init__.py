"""Bout domain services: penalty rules, match state and display names.

Nothing in here knows about transports or Flask; the sync coordinator drives it.
"""
