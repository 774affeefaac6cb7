"""Authentication.

Learn: Users log in with email/password and get a short-lived JWT access
token plus a long-lived refresh token. The same access token authenticates
REST calls (Authorization: Bearer) and the WebSocket handshake (?token=).
"""
