"""Authenticated user identity.

Credential handling lives outside this service; requests arrive with the
user ID already established (a trusted header, or a query parameter on the
WebSocket handshake).
"""
