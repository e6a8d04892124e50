"""auth/ -- Identity and credential package for tenantgate.

Layer rule: auth/ imports only core/ + stdlib + third-party libraries.
It does NOT import from api/.
api/ imports from auth/, not the other way around.
"""
