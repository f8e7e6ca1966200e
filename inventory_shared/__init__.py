"""
Shared utilities for the Inventory Access Service.

This package aggregates common building blocks consumed by the service:

- config: Service configuration via pydantic-settings
- logging: Structured logging with request correlation
- metrics: Prometheus metrics helpers
- errors: Canonical error types and responses
- retry: Retry with exponential backoff
- base_service: FastAPI service skeleton (middleware, health, error handlers)

Do not import from service_* packages into inventory_shared/.
"""
