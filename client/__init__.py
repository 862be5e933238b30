"""client/ -- Browser-side session handling for the TechGadgets admin panel.

Holds the access/refresh pair, attaches the bearer header to API calls,
refreshes once on 401 through a single shared in-flight refresh, and answers
"may this capability be shown?" from the cached permission snapshot.

Layer rule: client/ talks to the server over HTTP only. From auth/ it may
import the pure modules auth.catalog and auth.grants, nothing else.
"""
