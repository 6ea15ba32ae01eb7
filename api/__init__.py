"""
API Layer for the Face Login System

This package provides the FastAPI-based API layer that exposes:
- REST endpoints for the login session operations and observables
- WebSocket endpoint streaming session state changes
- REST endpoints for the enrollment slot and health checks

The API layer connects the presentation layer to the core session controller.
"""
