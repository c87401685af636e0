"""
Rate Lowry Backend — Application Package
==========================================

What:  API backend for rating food at the Lowry dining hall.
How:   Layered the same way top to bottom:

    ┌─────────────────────────────────────┐
    │           Routes (API Layer)        │  ← HTTP concerns only
    ├─────────────────────────────────────┤
    │  Services (write buffer, caching,   │  ← Business rules
    │  aggregation, image hosting)        │
    ├─────────────────────────────────────┤
    │       Models & Schemas (Data)       │  ← SQLAlchemy ORM + Pydantic
    ├─────────────────────────────────────┤
    │        Database (Persistence)       │  ← Async SQLAlchemy sessions
    └─────────────────────────────────────┘

Process-local state (the review write buffer and the food item cache) lives
in the services layer and is started/stopped by the application lifespan.
"""

__version__ = "1.0.0"
