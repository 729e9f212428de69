"""Productshot — FastAPI REST API layer.

This package contains the FastAPI application and the Pydantic request and
response models. It is a thin collaborator around the core pipeline.

Modules
-------
main
    FastAPI application with the route handlers and the ``main()`` CLI
    entry point.
models
    Pydantic models for API request and response validation.
"""
