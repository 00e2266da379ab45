"""
Shared utilities for the edge proxy.

This package aggregates common building blocks consumed by services:

- config: Service configuration via pydantic-settings
- logging: Structured logging with request correlation
- metrics: Prometheus metrics helpers
- errors: Canonical error types and their HTTP statuses
- base_service: FastAPI service shell

Do not import from service_* packages into shared/.
"""
