"""
Membership filter package.

Provides the Bloom filter that short-circuits lookups for listing IDs
that were never created, keeping them away from Redis and Postgres.
"""
