"""
Backend package for the sync functions.

Storage, queue and configuration abstractions shared by the Cloud Functions
entrypoints and the integration worker, with in-memory implementations for
tests and local runs.
"""
