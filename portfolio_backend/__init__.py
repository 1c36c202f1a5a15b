"""
Backend package for the portfolio API.

This package provides a FastAPI application with record-store, object-storage
and auth-provider abstractions so the service can run against the hosted
Supabase project in production and fully in memory during development/tests.
"""
