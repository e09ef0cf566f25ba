"""Authentication of FastAGI peers."""

from .digest_authenticator import AuthState, DigestAuthenticator, create_nonce, compute_digest

__all__ = ["AuthState", "DigestAuthenticator", "create_nonce", "compute_digest"]
