"""
Stand-ins for tests and local development. Nothing in the service imports
this module; a StaticAuthenticator has to be passed where an OAuth2Server
would otherwise be used.
"""

class StaticAuthenticator:
    """Authenticates every request as one fixed principal."""

    def __init__(self, user_id=1, client_id=None, scope=None):
        self.principal = {
            "user_id": user_id,
            "client_id": client_id,
            "scope": scope,
        }

    def authenticate(self, request, scope=None, optional=False):
        return dict(self.principal)
