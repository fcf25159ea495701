"""auth/ -- Signup, login, logout and OAuth sign-in flows for AccessLedger.

Layer rule: auth/ imports only stdlib, third-party libraries, core/ and
history/ (the orchestrator records audit entries). It does NOT import from
api/ or web/. api/ and web/ import from auth/, not the other way around.
"""
