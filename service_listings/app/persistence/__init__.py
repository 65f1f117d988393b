"""
Persistence package: the authoritative listing store.
"""
