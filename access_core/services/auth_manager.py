"""Authentication phase machine and the login/logout/profile flows built on it.

One manager is created per client context (an HTTP request, a CLI run). It
starts in ``INITIALISING``; :meth:`AuthSessionManager.start` restores a stored
token by re-validating it server-side, or falls through ``CHECKING_SETUP`` to
find out whether an administrator exists yet. Every other operation requires
``READY``.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from access_core.core.context import set_session_id
from access_core.core.errors import (
    AuthPhaseError,
    InvalidCredentials,
    MfaInvalid,
    PasswordPolicyError,
    SessionInvalid,
    SetupAlreadyCompleted,
    SignupDisabled,
)
from access_core.core.logging import audit
from access_core.core.permissions import ADMIN_ROLE, CapabilitySet
from access_core.core.security import (
    ACCESS_TOKEN_TYPE,
    MFA_CHALLENGE_TOKEN_TYPE,
    create_mfa_challenge_token,
    decode_token,
    get_password_hash,
)
from access_core.core.settings import settings
from access_core.models.user import User
from access_core.services import accounts, device_trust, sessions, tfa
from access_core.services.credentials import verify_secret
from access_core.services.sessions import ClientContext, CreatedSession
from access_core.utils.login_security import login_failures, mfa_failures, rate_limit

logger = logging.getLogger(__name__)

DEVICE_UNTRUSTED = "DeviceUntrusted"


class AuthPhase(str, Enum):
    INITIALISING = "initialising"
    CHECKING_SETUP = "checking_setup"
    READY = "ready"


_ALLOWED_TRANSITIONS: dict[AuthPhase, frozenset[AuthPhase]] = {
    AuthPhase.INITIALISING: frozenset({AuthPhase.CHECKING_SETUP, AuthPhase.READY}),
    AuthPhase.CHECKING_SETUP: frozenset({AuthPhase.READY}),
    AuthPhase.READY: frozenset(),
}


def generate_device_id() -> str:
    return str(uuid.uuid4())


@dataclass
class AuthResult:
    """Outcome of a credential step: either a session or an MFA challenge."""

    user: User
    session: Optional[CreatedSession] = None
    mfa_required: bool = False
    reason: Optional[str] = None
    challenge_token: Optional[str] = None
    device_id: Optional[str] = None

    @property
    def token(self) -> Optional[str]:
        return self.session.access_token if self.session else None


class AuthSessionManager:
    def __init__(self, db: AsyncSession, client: Optional[ClientContext] = None) -> None:
        self.db = db
        self.client = client or ClientContext()
        self.phase = AuthPhase.INITIALISING
        self.needs_first_time_setup = False
        self.account: Optional[User] = None
        self.session_id: Optional[str] = None
        self.capabilities: Optional[CapabilitySet] = None
        self.restore_error: Optional[SessionInvalid] = None

    # ─── Phase machine ────────────────────────────────────────────────────

    def _advance(self, target: AuthPhase) -> None:
        if target not in _ALLOWED_TRANSITIONS[self.phase]:
            raise AuthPhaseError(f"Illegal auth phase transition {self.phase.value} -> {target.value}")
        logger.debug("Auth phase %s -> %s", self.phase.value, target.value)
        self.phase = target

    def _require_ready(self) -> None:
        if self.phase is not AuthPhase.READY:
            raise AuthPhaseError(f"Operation requires READY, current phase is {self.phase.value}")

    def _require_account(self) -> User:
        self._require_ready()
        if self.account is None:
            raise self.restore_error or SessionInvalid("Authentication required")
        return self.account

    @property
    def is_authenticated(self) -> bool:
        return self.phase is AuthPhase.READY and self.account is not None

    async def start(self, stored_token: Optional[str] = None) -> AuthPhase:
        """Restore ``stored_token`` if it is still valid, otherwise check for first-time setup."""
        if self.phase is not AuthPhase.INITIALISING:
            raise AuthPhaseError("Auth manager already started")

        if stored_token and await self._restore(stored_token):
            self._advance(AuthPhase.READY)
            await self.refresh_permissions()
            return self.phase

        self._advance(AuthPhase.CHECKING_SETUP)
        self.needs_first_time_setup = await self._check_setup()
        self._advance(AuthPhase.READY)
        return self.phase

    async def _restore(self, token: str) -> bool:
        try:
            record, user = await sessions.validate_access_token(self.db, token)
        except SessionInvalid as exc:
            self.restore_error = exc
            return False
        except SQLAlchemyError:
            logger.exception("Could not verify stored session token")
            await self.db.rollback()
            self.restore_error = SessionInvalid("Session could not be verified")
            return False
        self.account = user
        self.session_id = record.id
        set_session_id(record.id)
        return True

    async def _check_setup(self) -> bool:
        try:
            return await accounts.count_admins(self.db) == 0
        except SQLAlchemyError:
            # Setup screens re-check before creating anything.
            logger.exception("Failed to check for administrator accounts")
            await self.db.rollback()
            return True

    # ─── Credential flows ─────────────────────────────────────────────────

    async def _open_session(
        self, user: User, *, device_id: Optional[str], mfa_remembered: bool
    ) -> AuthResult:
        client = replace(self.client, device_id=device_id)
        created = await sessions.create_session(self.db, user, client, mfa_remembered=mfa_remembered)
        await accounts.record_login(self.db, user)
        self.account = user
        self.session_id = created.id
        set_session_id(created.id)
        await self.refresh_permissions()
        audit(
            "auth.login_succeeded",
            user_id=str(user.id),
            new_session_id=created.id,
            client_ip=client.ip_address,
            mfa_remembered=mfa_remembered,
        )
        return AuthResult(user=user, session=created, device_id=device_id)

    async def login(self, handle: str, secret: str, device_id: Optional[str] = None) -> AuthResult:
        self._require_ready()
        throttle_key = handle.strip().lower()
        device_id = device_id or self.client.device_id or generate_device_id()

        if self.client.ip_address:
            await rate_limit(f"ip:{self.client.ip_address}", settings.rate_limit_per_minute, 60)
        await rate_limit(f"handle:{throttle_key}", settings.rate_limit_per_minute, 60)
        await login_failures.ensure_not_locked(throttle_key)

        user = await accounts.find_by_handle(self.db, handle)
        password_hash = user.hashed_password if user is not None and user.is_active else None
        if not await verify_secret(password_hash, secret):
            await login_failures.register_failure(throttle_key)
            audit("auth.login_failed", handle=throttle_key, client_ip=self.client.ip_address)
            raise InvalidCredentials()
        await login_failures.reset(throttle_key)

        if user.mfa_enabled and not await device_trust.is_trusted(
            self.db, user_id=user.id, device_id=device_id
        ):
            audit("auth.mfa_challenge_issued", user_id=str(user.id), client_ip=self.client.ip_address)
            return AuthResult(
                user=user,
                mfa_required=True,
                reason=DEVICE_UNTRUSTED,
                challenge_token=create_mfa_challenge_token(str(user.id)),
                device_id=device_id,
            )
        return await self._open_session(user, device_id=device_id, mfa_remembered=False)

    def _challenge_matches(self, user: User, challenge_token: Optional[str]) -> bool:
        if not settings.mfa_challenge_required:
            return True
        if not challenge_token:
            return False
        try:
            payload = decode_token(challenge_token, expected_type=MFA_CHALLENGE_TOKEN_TYPE)
        except ValueError:
            return False
        return payload.get("sub") == str(user.id)

    async def verify_mfa(
        self,
        handle: str,
        code: str,
        *,
        remember_device: bool = False,
        device_id: Optional[str] = None,
        challenge_token: Optional[str] = None,
    ) -> AuthResult:
        """Check the second factor and open a session.

        Every failure surfaces as ``MfaInvalid``. Only attempts carrying a
        valid login challenge count toward the per-account lockout; the rest
        are counted against the submitted handle so a bare username cannot
        lock the real holder out.
        """
        self._require_ready()
        device_id = device_id or self.client.device_id
        user = await accounts.find_by_handle(self.db, handle)
        challenged = user is not None and self._challenge_matches(user, challenge_token)
        lock_key = str(user.id) if challenged else f"handle:{handle.strip().lower()}"
        await mfa_failures.ensure_not_locked(lock_key)

        verified = False
        if challenged and user.is_active and user.mfa_enabled:
            try:
                verified = await asyncio.wait_for(
                    tfa.verify_code(self.db, user, code), timeout=settings.verify_timeout_seconds
                )
            except asyncio.TimeoutError:
                logger.warning("Second-factor verification timed out", extra={"user_id": str(user.id)})
                verified = False

        if not verified:
            await mfa_failures.register_failure(lock_key)
            audit("auth.mfa_failed", lock_key=lock_key, client_ip=self.client.ip_address)
            raise MfaInvalid()
        await mfa_failures.reset(lock_key)

        if remember_device:
            device_id = device_id or generate_device_id()
            await device_trust.remember(
                self.db,
                user_id=user.id,
                device_id=device_id,
                user_agent=self.client.user_agent,
                ip_address=self.client.ip_address,
            )
        return await self._open_session(user, device_id=device_id, mfa_remembered=remember_device)

    async def refresh(self, refresh_token: str) -> AuthResult:
        self._require_ready()
        record, user, access_token = await sessions.refresh_session(self.db, refresh_token)
        self.account = user
        self.session_id = record.id
        await self.refresh_permissions()
        created = CreatedSession(
            id=record.id,
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=record.expires_at,
        )
        return AuthResult(user=user, session=created, device_id=self.client.device_id)

    async def logout(self, session_token: Optional[str] = None) -> None:
        """Revoke the current session if possible; never raises for store failures."""
        self._require_ready()
        session_id = self.session_id
        if session_id is None and session_token:
            try:
                payload = decode_token(session_token, expected_type=ACCESS_TOKEN_TYPE, allow_expired=True)
                session_id = payload.get("sid")
            except ValueError:
                session_id = None
        if session_id:
            try:
                await sessions.revoke_by_id(self.db, session_id)
            except SQLAlchemyError:
                logger.exception("Failed to revoke session on logout", extra={"revoked_session_id": session_id})
                await self.db.rollback()
            else:
                audit("auth.logout", revoked_session_id=session_id)
        self.account = None
        self.session_id = None
        self.capabilities = None

    async def logout_all(self) -> int:
        user = self._require_account()
        revoked = await sessions.revoke_all(self.db, user_id=user.id)
        audit("auth.logout_all", user_id=str(user.id), revoked=revoked)
        self.account = None
        self.session_id = None
        self.capabilities = None
        return revoked

    # ─── Account lifecycle ────────────────────────────────────────────────

    async def signup(
        self,
        *,
        username: str,
        email: str,
        password: str,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
    ) -> AuthResult:
        self._require_ready()
        if not settings.signup_enabled:
            raise SignupDisabled()
        user = await accounts.create_account(
            self.db,
            username=username,
            email=email,
            password=password,
            role=settings.default_user_role,
            first_name=first_name,
            last_name=last_name,
        )
        audit("auth.signup", user_id=str(user.id))
        return await self._open_session(user, device_id=self.client.device_id, mfa_remembered=False)

    async def setup_admin(
        self,
        *,
        username: str,
        email: str,
        password: str,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
    ) -> AuthResult:
        """Create the first administrator; refused once any administrator exists."""
        self._require_ready()
        if await accounts.count_admins(self.db) > 0:
            raise SetupAlreadyCompleted()
        user = await accounts.create_account(
            self.db,
            username=username,
            email=email,
            password=password,
            role=ADMIN_ROLE,
            first_name=first_name,
            last_name=last_name,
        )
        self.needs_first_time_setup = False
        audit("auth.first_admin_created", user_id=str(user.id))
        return await self._open_session(user, device_id=self.client.device_id, mfa_remembered=False)

    async def update_profile(
        self,
        *,
        username: Optional[str] = None,
        email: Optional[str] = None,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
    ) -> User:
        user = self._require_account()
        new_username = username.strip() if username and username.strip() != user.username else None
        new_email = email.strip().lower() if email and email.strip().lower() != user.email else None
        await accounts.ensure_available(
            self.db, username=new_username, email=new_email, exclude_user_id=user.id
        )
        if new_username:
            user.username = new_username
        if new_email:
            user.email = new_email
        if first_name is not None:
            user.first_name = first_name or None
        if last_name is not None:
            user.last_name = last_name or None
        self.db.add(user)
        await self.db.commit()
        return user

    async def change_password(self, current_password: str, new_password: str) -> int:
        """Replace the password; returns how many other sessions were revoked."""
        user = self._require_account()
        if not await verify_secret(user.hashed_password, current_password):
            raise InvalidCredentials("Current password is incorrect")
        if current_password == new_password:
            raise PasswordPolicyError("New password must differ from the current password")
        user.hashed_password = get_password_hash(new_password)
        self.db.add(user)
        await self.db.commit()

        revoked = 0
        if settings.revoke_sessions_on_password_change:
            revoked = await sessions.revoke_all_except(
                self.db, user_id=user.id, current_session_id=self.session_id
            )
        audit("auth.password_changed", user_id=str(user.id), revoked_sessions=revoked)
        return revoked

    async def refresh_permissions(self) -> CapabilitySet:
        """Re-read the account's capability set; only the in-memory copy changes."""
        user = self._require_account()
        self.capabilities = await accounts.load_capabilities(self.db, user.role)
        return self.capabilities
