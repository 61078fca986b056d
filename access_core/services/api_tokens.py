from __future__ import annotations

import asyncio
import base64
import binascii
import ipaddress
import logging
import secrets
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from access_core.core.errors import (
    ApiNetworkDenied,
    ApiTokenInvalid,
    ScopeConfigInvalid,
    ScopeDenied,
)
from access_core.core.logging import audit
from access_core.core.security import pwd_context
from access_core.models.api_token import ApiToken
from access_core.services.credentials import verify_secret

logger = logging.getLogger(__name__)

PROGRAMMATIC_INTEGRATION = "api"
TOKEN_KEY_PREFIX = "ak_"


def validate_scope(token: ApiToken, resource: str, action: str) -> None:
    """Authorise ``action`` on ``resource`` for a programmatic token.

    Interactive integration types are authorised by session validity and pass
    straight through. A missing or malformed grant fails closed as a
    configuration defect; an absent resource or action is a plain denial.
    Matching is exact: no wildcards, no prefixes.
    """
    if token.integration_type != PROGRAMMATIC_INTEGRATION:
        return

    scopes = token.scopes
    if not isinstance(scopes, Mapping):
        logger.error(
            "API token has no scope map",
            extra={"token_key": token.token_key, "resource": resource, "action": action},
        )
        raise ScopeConfigInvalid("This API key has no permission configuration")

    if resource not in scopes:
        logger.warning(
            "API token lacks resource",
            extra={"token_key": token.token_key, "resource": resource, "action": action},
        )
        raise ScopeDenied(f"This API key does not have access to {resource}")

    actions = scopes[resource]
    if not isinstance(actions, (list, tuple, set, frozenset)):
        logger.error(
            "API token has malformed scopes for resource",
            extra={"token_key": token.token_key, "resource": resource, "action": action},
        )
        raise ScopeConfigInvalid("Invalid API key permissions configuration")

    if action not in actions:
        logger.warning(
            "API token lacks action",
            extra={"token_key": token.token_key, "resource": resource, "action": action},
        )
        raise ScopeDenied(f"This API key does not have permission to {action} {resource}")


def normalize_scope_map(scopes: Optional[Mapping[str, Any]]) -> Optional[dict[str, list[str]]]:
    """Check a grant before issuance: every resource maps to a list of action names."""
    if scopes is None:
        return None
    if not isinstance(scopes, Mapping):
        raise ValueError("Scopes must be an object")
    normalized: dict[str, list[str]] = {}
    for resource, actions in scopes.items():
        if not isinstance(actions, (list, tuple)):
            raise ValueError(f'Scopes for resource "{resource}" must be an array of actions')
        if not all(isinstance(action, str) for action in actions):
            raise ValueError("All actions in scopes must be strings")
        normalized[str(resource)] = list(dict.fromkeys(actions))
    return normalized


def parse_basic_credentials(authorization: Optional[str]) -> tuple[str, str]:
    if not authorization or not authorization.startswith("Basic "):
        raise ApiTokenInvalid("Missing or invalid authorization header")
    try:
        decoded = base64.b64decode(authorization[len("Basic "):].strip(), validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError) as exc:
        raise ApiTokenInvalid("Invalid credentials format") from exc
    key, _, secret = decoded.partition(":")
    if not key or not secret:
        raise ApiTokenInvalid("Invalid credentials format")
    return key, secret


def ip_allowed(client_ip: Optional[str], allowed_ranges: Sequence[str]) -> bool:
    if not allowed_ranges:
        return True
    if not client_ip:
        return False
    try:
        address = ipaddress.ip_address(client_ip)
    except ValueError:
        return False
    for entry in allowed_ranges:
        try:
            if address in ipaddress.ip_network(entry, strict=False):
                return True
        except ValueError:
            logger.error("Ignoring malformed allowed IP range", extra={"ip_range": entry})
    return False


async def authenticate(
    db: AsyncSession,
    authorization: Optional[str],
    *,
    integration_type: str,
    client_ip: Optional[str],
    now: Optional[datetime] = None,
) -> ApiToken:
    """Resolve Basic ``key:secret`` credentials to an active token of ``integration_type``."""
    key, secret = parse_basic_credentials(authorization)
    result = await db.execute(select(ApiToken).where(ApiToken.token_key == key))
    token = result.scalar_one_or_none()
    # Unknown keys still pay for a hash comparison.
    if not await verify_secret(token.token_secret_hash if token else None, secret):
        logger.info("API key authentication failed", extra={"token_key": key})
        raise ApiTokenInvalid()
    now = now or datetime.now(timezone.utc)
    if not token.is_active:
        raise ApiTokenInvalid("API key is disabled")
    if token.expires_at and token.expires_at < now:
        raise ApiTokenInvalid("API key has expired")
    if token.integration_type != integration_type:
        raise ApiTokenInvalid("Invalid API key type")
    if not ip_allowed(client_ip, token.allowed_ip_ranges or []):
        logger.warning("API key used from disallowed address", extra={"token_key": key, "client_ip": client_ip})
        raise ApiNetworkDenied()

    token.last_used_at = now
    db.add(token)
    await db.commit()
    return token


def generate_token_credentials() -> tuple[str, str]:
    return f"{TOKEN_KEY_PREFIX}{secrets.token_hex(16)}", secrets.token_hex(32)


async def issue_token(
    db: AsyncSession,
    *,
    token_name: str,
    created_by_user_id,
    integration_type: str = PROGRAMMATIC_INTEGRATION,
    scopes: Optional[Mapping[str, Any]] = None,
    allowed_ip_ranges: Sequence[str] = (),
    expires_at: Optional[datetime] = None,
) -> tuple[ApiToken, str]:
    """Create a token; the plaintext secret is returned here and nowhere else."""
    for entry in allowed_ip_ranges:
        ipaddress.ip_network(entry, strict=False)
    token_key, token_secret = generate_token_credentials()
    secret_hash = await asyncio.to_thread(pwd_context.hash, token_secret)
    token = ApiToken(
        token_name=token_name,
        token_key=token_key,
        token_secret_hash=secret_hash,
        created_by_user_id=created_by_user_id,
        integration_type=integration_type,
        scopes=normalize_scope_map(scopes) if integration_type == PROGRAMMATIC_INTEGRATION else None,
        allowed_ip_ranges=list(allowed_ip_ranges),
        is_active=True,
        expires_at=expires_at,
    )
    db.add(token)
    await db.commit()
    await db.refresh(token)
    audit("api_token.issued", token_key=token_key, created_by=str(created_by_user_id))
    return token, token_secret


async def list_tokens(db: AsyncSession) -> list[ApiToken]:
    result = await db.execute(select(ApiToken).order_by(ApiToken.created_at.desc()))
    return list(result.scalars().all())


async def deactivate_token(db: AsyncSession, token_id) -> Optional[ApiToken]:
    token = await db.get(ApiToken, token_id)
    if token is None:
        return None
    token.is_active = False
    db.add(token)
    await db.commit()
    audit("api_token.deactivated", token_key=token.token_key)
    return token
