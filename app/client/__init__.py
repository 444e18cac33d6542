"""
Caller-side access to the authorization API over HTTP.

Usage:
    async with ApiTransport("https://api.example.org/api", token=token) as transport:
        api = AuthorizationApi(transport)
        profile = await api.fetch_profile()
"""
from app.client.api import AuthorizationApi, HttpGrantStore
from app.client.transport import ApiTransport

__all__ = ["ApiTransport", "AuthorizationApi", "HttpGrantStore"]
