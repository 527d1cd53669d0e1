"""Archifigure — FastAPI REST API layer.

This package contains the FastAPI application, Pydantic request models, and
the prediction list reconciliation logic.

Modules
-------
main
    FastAPI application with all route handlers and the ``main()`` CLI
    entry point.
models
    Pydantic models for API request validation.
predictions
    Filtering and ordering of provider prediction lists.
"""
