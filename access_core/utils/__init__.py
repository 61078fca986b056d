from access_core.utils.login_security import login_failures, mfa_failures, rate_limit

__all__ = [
    "login_failures",
    "mfa_failures",
    "rate_limit",
]
