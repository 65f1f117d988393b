"""
Locking package: stampede protection for hot listing keys.
"""
