from .codec import SecretCheck, SecretPair, SecretRecord, check_secret, fingerprint, issue_secret_pair
from .passwords import PasswordHasher
from .repository import AuthRepository, DuplicateUserError
from .service import EXPOSED_METHODS, AuthError, AuthService, RateLimiter, flow_boundary
from .sessions import SessionIdentity, SessionManager

__all__ = [
    "AuthError",
    "AuthRepository",
    "AuthService",
    "DuplicateUserError",
    "EXPOSED_METHODS",
    "PasswordHasher",
    "RateLimiter",
    "SecretCheck",
    "SecretPair",
    "SecretRecord",
    "SessionIdentity",
    "SessionManager",
    "check_secret",
    "fingerprint",
    "flow_boundary",
    "issue_secret_pair",
]
