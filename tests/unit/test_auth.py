"""Unit tests for back-office bearer token auth."""

import pytest
from fastapi import HTTPException
from fastapi.security import HTTPAuthorizationCredentials
from jose import jwt
from libs.auth.dependencies import get_current_user, require_admin
from libs.common.config import get_settings


def _credentials(claims: dict, secret: str | None = None) -> HTTPAuthorizationCredentials:
    settings = get_settings()
    token = jwt.encode(claims, secret or settings.JWT_SECRET, algorithm=settings.JWT_ALG)
    return HTTPAuthorizationCredentials(scheme="Bearer", credentials=token)


@pytest.mark.asyncio
@pytest.mark.unit
async def test_valid_token_yields_user():
    user = await get_current_user(
        _credentials({"sub": "u-1", "role": "admin", "business_id": "biz-1"})
    )
    assert user.user_id == "u-1"
    assert user.business_id == "biz-1"
    assert (await require_admin(user)) is user


@pytest.mark.asyncio
@pytest.mark.unit
async def test_bad_signature_is_unauthorized():
    with pytest.raises(HTTPException) as exc:
        await get_current_user(_credentials({"sub": "u-1"}, secret="other-secret"))
    assert exc.value.status_code == 401


@pytest.mark.asyncio
@pytest.mark.unit
async def test_non_admin_is_forbidden():
    user = await get_current_user(_credentials({"sub": "u-1"}))
    with pytest.raises(HTTPException) as exc:
        await require_admin(user)
    assert exc.value.status_code == 403
