"""
Domain utilities for the Proxy Service.

Header sanitization, request dispatch and response construction that do
not belong to adapters or transport-specific layers.
"""
