"""auth/ -- Session authentication and authorization engine for TechGadgets.

Layer rule: auth/ imports only stdlib + third-party libraries + core/.
It does NOT import from api/ or client/.
api/ imports from auth/, not the other way around. client/ may import the
pure modules auth.catalog and auth.grants, nothing else.
"""
