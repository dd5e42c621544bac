"""
Backend package for the pet photo feed.

This package provides a FastAPI application with post store and blob storage
abstractions so the feed can run against Postgres and an object store, or
entirely on the local filesystem.
"""
