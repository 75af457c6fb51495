"""
API Layer for the Study Buddy Service

This package provides the FastAPI-based API layer that exposes:
- Password and face sign-in backed by the identity provider
- Study plan, quiz and explanation generation
- Versioned notes and study history
- Identity provider webhooks, user management and health checks

The browser computes face embeddings; only the numeric vectors reach the API.
"""
