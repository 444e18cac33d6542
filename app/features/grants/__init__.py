"""
Program-scoped grant store feature module.

Role grants per (role, program) and user assignments per (user, program),
replaced atomically per scope key.
"""
