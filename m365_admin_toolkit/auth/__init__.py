from .authenticator import AuthCancelled, AuthenticationError, Authenticator

__all__ = ["AuthCancelled", "AuthenticationError", "Authenticator"]
