"""
Core Package

Contains the provider-agnostic core logic including:
- RateLimiter: Fixed-window request counters keyed by scope and client
- HTTP utilities: Timeout-bounded upstream calls, body decoding and secret redaction
- ProviderConnector: Protocol every brokerage connector satisfies
- ConnectorRegistry: Lookup table from provider id to connector
- Schemas: Pydantic models for holdings, diagnostics and quotes

This layer ensures every provider answers with the same sanitized result shape.
"""
