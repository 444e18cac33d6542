"""
Passengers: the program-scoped resource gated by the authorization guard.
"""
