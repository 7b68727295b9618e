"""auth/ -- Identity, session, and authorization package for authgate.

Layer rule: auth/ imports only stdlib, third-party libraries, and core/.
It does NOT import from api/ or mail/.
api/ imports from auth/, not the other way around.
"""
