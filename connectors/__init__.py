"""
Provider Connectors Package

This package contains one module per brokerage provider.
Providers with a real upstream API have their own subfolder with:
- api_client.py: REST calls and payload normalization
- __init__.py: The connector class (descriptor + run_test)

Providers without a usable API (Revolut, Trade Republic) only ship the
connector class, which reports a static diagnostic.
"""
