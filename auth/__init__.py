"""auth/ -- Accounts, login policy, MFA, and sessions for NextGate.

Layer rule: auth/ imports only stdlib + third-party libraries + core/ + audit/.
It does NOT import from api/. api/ imports from auth/, not the other way around.
"""
