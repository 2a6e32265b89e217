"""Pydantic request schemas used by the API.

Schemas keep API input shapes stable. Required-field checks that must
answer with a specific message (for example "Title is required") are
done by the services, so titles are optional here.
"""

from pydantic import BaseModel, EmailStr
from typing import Optional


class RegisterIn(BaseModel):
    """Payload for local user registration."""
    email: EmailStr
    password: str
    display_name: Optional[str] = None


class LoginIn(BaseModel):
    email: EmailStr
    password: str


class PasswordChangeIn(BaseModel):
    current_password: str
    new_password: str
    confirm_password: str


class ProfileUpdate(BaseModel):
    display_name: Optional[str] = None
    bio: Optional[str] = None
    email: Optional[EmailStr] = None


class PlanIn(BaseModel):
    """Create/update payload for a learning plan."""
    title: Optional[str] = None
    description: Optional[str] = None


class WeekIn(BaseModel):
    title: Optional[str] = None


class TaskIn(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None


class SubtaskIn(BaseModel):
    title: Optional[str] = None


class InvitationIn(BaseModel):
    email: EmailStr
