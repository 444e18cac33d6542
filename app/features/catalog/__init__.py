"""
Permission registry feature module.

The closed catalog of programs, roles and permissions. Administered
externally; read-only from the point of view of the grant store.
"""
