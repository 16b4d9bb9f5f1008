"""
Shared infrastructure: configuration, retry helpers and service construction.
"""
