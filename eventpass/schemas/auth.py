from datetime import datetime
from pydantic import BaseModel, EmailStr
from typing import Optional, List


class RegisterIn(BaseModel):
    email: EmailStr
    password: str
    first_name: str
    last_name: str
    is_organizer: bool = False


class LoginIn(BaseModel):
    email: EmailStr
    password: str


class ChangePasswordIn(BaseModel):
    current_password: str
    new_password: str


class AuthStatusOut(BaseModel):
    is_online: bool
    last_activity: Optional[datetime] = None
    last_login: Optional[datetime] = None
    last_logout: Optional[datetime] = None
    session_count: int
    active_tokens_count: int


class UserOut(BaseModel):
    id: int
    email: EmailStr
    first_name: str
    last_name: str
    name: str
    role: str
    auth_status: AuthStatusOut

    class Config:
        from_attributes = True


class TokenOut(BaseModel):
    token: str
    user: UserOut


class ProfileOut(BaseModel):
    user: UserOut


class CheckOut(BaseModel):
    is_authenticated: bool
    user: Optional[UserOut] = None


class SessionOut(BaseModel):
    created_at: datetime
    last_used: datetime
    user_agent: Optional[str] = None
    ip_address: Optional[str] = None


class LoginHistoryOut(BaseModel):
    login_at: datetime
    logout_at: Optional[datetime] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None

    class Config:
        from_attributes = True


class AuthStatusDetailOut(BaseModel):
    auth_status: AuthStatusOut
    login_history: List[LoginHistoryOut]


class MessageOut(BaseModel):
    message: str


class StatsOut(BaseModel):
    total_users: int
    online_users: int
    recent_logins: int
    total_active_sessions: int


class UserStatusOut(BaseModel):
    id: int
    email: EmailStr
    name: str
    role: str
    auth_status: AuthStatusOut
    last_login: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True


class PaginationOut(BaseModel):
    current_page: int
    total_pages: int
    total_users: int
    has_next_page: bool
    has_prev_page: bool


class UsersStatusOut(BaseModel):
    users: List[UserStatusOut]
    pagination: PaginationOut
