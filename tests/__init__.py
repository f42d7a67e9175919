"""
Test Suite

Contains the unit tests for the backend system.

Structure:
- tests/unit/: Tests for individual components (rate limiting, connectors, pricing, API)
- tests/conftest.py: FakeHttpClient and shared fixtures; no test touches the network

Uses pytest with pytest-asyncio for testing async functionality.
"""
