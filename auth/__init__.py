"""auth/ -- Identity and credential core for idgate.

Tokens, one-time passcodes, SSO reconciliation, contact-field conflict checks
and the flows that compose them (auth.service.AuthService).

Layer rule: auth/ imports only stdlib, third-party libraries and core/.
It does NOT import from api/. api/ imports from auth/, not the other way around.
"""
