"""
Listings caching package.

Provides the Redis-backed read-through cache layer. TTLs are jittered at
write time so entries written together do not expire together.
"""
