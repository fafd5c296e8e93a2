import pytest
from fastapi import HTTPException
from fastapi.security import HTTPAuthorizationCredentials

from booking_backend.auth.dependencies import get_current_provider, get_current_user
from booking_backend.auth.jwt_handler import create_access_token, decode_access_token
from booking_backend.routes.auth_routes import me


def _bearer(token: str) -> HTTPAuthorizationCredentials:
    return HTTPAuthorizationCredentials(scheme='Bearer', credentials=token)


def test_access_token_carries_only_the_subject() -> None:
    payload = decode_access_token(create_access_token('provider@example.com'))

    assert payload['sub'] == 'provider@example.com'
    assert set(payload) == {'sub', 'exp', 'iat'}


def test_role_comes_from_the_database(db, provider) -> None:
    provider.role = 'client'
    db.commit()

    user = get_current_user(credentials=_bearer(create_access_token(provider.email)), db=db)

    with pytest.raises(HTTPException) as exception_info:
        get_current_provider(current_user=user)

    assert exception_info.value.status_code == 403


def test_valid_token_resolves_user(db, provider) -> None:
    user = get_current_user(credentials=_bearer(create_access_token(provider.email)), db=db)

    assert user.id == provider.id


def test_tampered_token_is_rejected(db, provider) -> None:
    with pytest.raises(HTTPException) as exception_info:
        get_current_user(credentials=_bearer(create_access_token(provider.email) + 'x'), db=db)

    assert exception_info.value.status_code == 401
    assert exception_info.value.detail == 'Invalid token'


def test_expired_token_is_rejected(db, provider) -> None:
    with pytest.raises(HTTPException) as exception_info:
        get_current_user(credentials=_bearer(create_access_token(provider.email, expires_minutes=-1)), db=db)

    assert exception_info.value.status_code == 401


def test_unknown_user_is_rejected(db) -> None:
    with pytest.raises(HTTPException) as exception_info:
        get_current_user(credentials=_bearer(create_access_token('ghost@example.com')), db=db)

    assert exception_info.value.detail == 'User not found'


def test_clients_cannot_act_as_providers(client_user, provider, admin) -> None:
    with pytest.raises(HTTPException) as exception_info:
        get_current_provider(current_user=client_user)

    assert exception_info.value.status_code == 403
    assert get_current_provider(current_user=provider) is provider
    assert get_current_provider(current_user=admin) is admin


def test_me_returns_the_signed_in_user(provider) -> None:
    assert me(current_user=provider) == {'id': provider.id, 'email': provider.email, 'role': 'provider'}
