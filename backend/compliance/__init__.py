"""Application package for the compliance assessment backend.

This package exposes the service, repository, scoring and model modules
used by the FastAPI application. It is intentionally lightweight;
individual modules contain the concrete implementations and
documentation.
"""
