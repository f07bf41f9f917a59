"""
Reusable caching primitives for rate-limited upstream data.

Cache-first resolution with stale fallback, ordered provider fallback,
day-sharded batch refresh, and the async service they run in.
"""

__version__ = "1.0.0"
