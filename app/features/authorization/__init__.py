"""
Authorization profile building and program-scoped guard checks.
"""
