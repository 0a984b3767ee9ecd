import math
from fastapi import APIRouter, Depends, Query, Request
from typing import List, Optional
from ..schemas.auth import (
    RegisterIn,
    LoginIn,
    ChangePasswordIn,
    TokenOut,
    ProfileOut,
    CheckOut,
    SessionOut,
    AuthStatusDetailOut,
    MessageOut,
    StatsOut,
    UsersStatusOut,
)
from ..crud import (
    create_user,
    authenticate_user,
    logout as logout_session,
    revoke_all_sessions,
    list_sessions,
    change_password,
    deactivate_user,
    auth_stats,
    list_users_status,
)
from ..auth import decode_token
from ..errors import InvalidToken
from ..dependencies import get_bearer_token, get_current_user, get_optional_user, require_admin
from ..models.users import User

router = APIRouter()


def _client_info(request: Request):
    user_agent = request.headers.get('user-agent', 'Unknown')
    ip = request.client.host if request.client else 'Unknown'
    return user_agent, ip


@router.post('/register', response_model=TokenOut, status_code=201)
async def register(payload: RegisterIn, request: Request):
    user_agent, ip = _client_info(request)
    token, user = await create_user(payload, user_agent=user_agent, ip=ip)
    return {'token': token, 'user': user}


@router.post('/login', response_model=TokenOut)
async def login(payload: LoginIn, request: Request):
    user_agent, ip = _client_info(request)
    token, user = await authenticate_user(payload.email, payload.password, user_agent=user_agent, ip=ip)
    return {'token': token, 'user': user}


@router.post('/logout', response_model=MessageOut)
async def logout(token: Optional[str] = Depends(get_bearer_token)):
    # Logout never fails on a bad or stale token; a genuinely signed one
    # (expired or not) is removed from its owner's ledger.
    if token:
        try:
            claims = decode_token(token, allow_expired=True)
        except InvalidToken:
            claims = None
        if claims:
            await logout_session(claims['user_id'], token)
    return {'message': 'Logged out successfully'}


@router.get('/sessions', response_model=List[SessionOut])
async def sessions(current_user: User = Depends(get_current_user)):
    return await list_sessions(current_user.id)


@router.post('/revoke-all-sessions', response_model=MessageOut)
async def revoke_all(current_user: User = Depends(get_current_user)):
    await revoke_all_sessions(current_user.id)
    return {'message': 'All sessions revoked successfully'}


@router.get('/profile', response_model=ProfileOut)
async def profile(current_user: User = Depends(get_current_user)):
    return {'user': current_user}


@router.get('/check', response_model=CheckOut)
async def check(current_user: Optional[User] = Depends(get_optional_user)):
    return {'is_authenticated': current_user is not None, 'user': current_user}


@router.get('/auth-status', response_model=AuthStatusDetailOut)
async def auth_status(current_user: User = Depends(get_current_user)):
    return {'auth_status': current_user.auth_status, 'login_history': current_user.login_history}


@router.put('/change-password', response_model=MessageOut)
async def update_password(payload: ChangePasswordIn, current_user: User = Depends(get_current_user)):
    await change_password(current_user.id, payload.current_password, payload.new_password)
    return {'message': 'Password changed successfully'}


@router.delete('/account', response_model=MessageOut)
async def delete_account(current_user: User = Depends(get_current_user)):
    await deactivate_user(current_user.id)
    return {'message': 'Account deactivated successfully'}


@router.get('/stats', response_model=StatsOut)
async def stats(admin: User = Depends(require_admin)):
    return await auth_stats()


@router.get('/admin/users-status', response_model=UsersStatusOut)
async def users_status(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    admin: User = Depends(require_admin),
):
    users, total = await list_users_status(page=page, limit=limit)
    total_pages = math.ceil(total / limit)
    return {
        'users': users,
        'pagination': {
            'current_page': page,
            'total_pages': total_pages,
            'total_users': total,
            'has_next_page': page < total_pages,
            'has_prev_page': page > 1,
        },
    }
