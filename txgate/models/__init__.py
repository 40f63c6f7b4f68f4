from .auth import LoginChallenge, OneTimeCode, PasswordReset, User, UserDevice, UserProfile, UserSession
from .db import Base
from .security import AuditLog, BusinessObject, Method, PermissionGrant, Profile

__all__ = [
	"AuditLog",
	"Base",
	"BusinessObject",
	"LoginChallenge",
	"Method",
	"OneTimeCode",
	"PasswordReset",
	"PermissionGrant",
	"Profile",
	"User",
	"UserDevice",
	"UserProfile",
	"UserSession",
]
