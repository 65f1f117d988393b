"""
Listing domain: models, collaborator interfaces and the guarded lookup path.
"""
