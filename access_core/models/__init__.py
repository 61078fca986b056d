from access_core.models.api_token import ApiToken
from access_core.models.job_history import JobHistory
from access_core.models.role_permission import RolePermission
from access_core.models.trusted_device import TrustedDevice
from access_core.models.user import User
from access_core.models.user_mfa_recovery_code import UserMfaRecoveryCode
from access_core.models.user_session import UserSession
from access_core.models.user_tfa_credential import UserTfaCredential

__all__ = [
    "ApiToken",
    "JobHistory",
    "RolePermission",
    "TrustedDevice",
    "User",
    "UserMfaRecoveryCode",
    "UserSession",
    "UserTfaCredential",
]
