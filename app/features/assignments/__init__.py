"""
Assignment mutator feature module.

Drafts of role grants and user assignments, committed through a grant store.
"""
