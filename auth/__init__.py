"""auth/ -- Credential and token lifecycle core for Credvault.

Layer rule: auth/ imports only stdlib + third-party libraries, plus
auth/dependencies.py which is the FastAPI seam. It does NOT import from api/
or core/. api/ and main.py import from auth/, not the other way around.
"""
