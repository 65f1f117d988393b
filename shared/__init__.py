"""
Shared utilities for the CampusNest listings cache guard.

This package aggregates common building blocks consumed by the service:

- config: Service configuration via pydantic-settings
- logging: Structured logging via structlog
- metrics: Prometheus metrics helpers
- errors: Canonical error types and responses
- test_helpers: In-memory stand-ins for Redis, the lock service and the store

Do not import from service_* packages into shared/.
"""
