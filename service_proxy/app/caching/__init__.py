"""
Proxy caching package.

Whole-entity response cache keyed by canonical target URL. Only complete
2xx GET responses are stored; expiry belongs to the backing store.
"""
