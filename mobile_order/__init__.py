"""
Backend package for the mobile order service.

This package provides a FastAPI application for shop owners to manage their
shop profile, menu categories and products, and incoming orders, with
database, storage and auth abstractions that fall back to in-memory
implementations for local development.
"""
