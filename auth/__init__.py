"""auth/ -- Authentication, session, and account package for the coin server.

Layer rule: auth/ imports only stdlib, third-party libraries, core/ (config)
and cache/ (session cache errors). It does NOT import from api/.
api/ imports from auth/, not the other way around.
"""
