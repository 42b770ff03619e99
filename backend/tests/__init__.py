"""
pytest test suite for the Print Order Service backend.

Test categories:
- Unit tests: status tables, identifiers, pricing, validators
- Service tests: order store, supervisor, payment orchestrator, invoice pipeline
- API tests: full FastAPI app with in-memory SQLite
"""
