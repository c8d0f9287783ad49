"""
Shared infrastructure: debounce scheduling, audit trail and HTTP middleware.
"""
