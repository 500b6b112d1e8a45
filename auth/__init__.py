"""auth/ -- Session and token lifecycle for Authgate.

Layer rule: auth/ imports only stdlib, third-party libraries, core/ and cache/.
It does NOT import from api/. api/ imports from auth/, not the other way around.
"""
