"""audit/ -- Append-only security audit log and security alerting for NextGate.

Layer rule: audit/ imports only stdlib + third-party libraries + core/.
It does NOT import from api/ or auth/. auth/ writes to audit/, not the
other way around.
"""
