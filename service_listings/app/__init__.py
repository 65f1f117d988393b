"""
Listings cache guard application.
"""
