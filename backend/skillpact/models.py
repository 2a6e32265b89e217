"""SQLModel data models.

This module defines the application's database tables using SQLModel.
A plan is broken down into weeks, a week into tasks and a task into
subtasks. Completion is tracked per user: `completed_by` holds the ids of
the users who marked an item done and is stored as a JSON list.

Memberships and invitations are kept in their own tables; a plan's owner
is never stored as a membership row.
"""

import uuid
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import JSON, Column
from sqlmodel import SQLModel, Field

INVITATION_PENDING = "pending"
INVITATION_ACCEPTED = "accepted"
INVITATION_REJECTED = "rejected"
INVITATION_LEFT = "left"

MEMBERSHIP_ACCEPTED = "accepted"


def _new_id() -> str:
    return uuid.uuid4().hex


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class User(SQLModel, table=True):
    """A user known to the service.

    `id` is the identity-provider UID. `password_hash` is only set for
    users that registered through the local `/auth/register` endpoint.
    """
    id: str = Field(default_factory=_new_id, primary_key=True)
    email: str = Field(index=True, unique=True, nullable=False)
    display_name: str = ""
    bio: str = ""
    password_hash: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: Optional[datetime] = None


class LearningPlan(SQLModel, table=True):
    """Top-level learning goal owned by a single user."""
    id: str = Field(default_factory=_new_id, primary_key=True)
    title: str
    description: str = ""
    owner_id: str = Field(foreign_key='user.id', index=True)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Week(SQLModel, table=True):
    """A week of a plan.

    `week_number` is assigned once at creation and never renumbered, so
    deleting a week can leave gaps.
    """
    id: str = Field(default_factory=_new_id, primary_key=True)
    plan_id: str = Field(foreign_key='learningplan.id', index=True)
    week_number: int
    title: str
    created_at: datetime = Field(default_factory=utcnow)


class Task(SQLModel, table=True):
    id: str = Field(default_factory=_new_id, primary_key=True)
    week_id: str = Field(foreign_key='week.id', index=True)
    title: str
    description: str = ""
    completed_by: List[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    created_at: datetime = Field(default_factory=utcnow)


class Subtask(SQLModel, table=True):
    id: str = Field(default_factory=_new_id, primary_key=True)
    task_id: str = Field(foreign_key='task.id', index=True)
    title: str
    completed_by: List[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    created_at: datetime = Field(default_factory=utcnow)


class Membership(SQLModel, table=True):
    """Access grant for a non-owner, one row per (plan, user)."""
    plan_id: str = Field(foreign_key='learningplan.id', primary_key=True)
    user_id: str = Field(foreign_key='user.id', primary_key=True)
    email: str
    status: str = MEMBERSHIP_ACCEPTED
    joined_at: datetime = Field(default_factory=utcnow)


class Invitation(SQLModel, table=True):
    """A request for a user, identified by email, to join a plan.

    `plan_title` and `plan_description` are a snapshot taken when the
    invitation is sent and are not updated when the plan changes.
    `plan_id` is not a foreign key; invitations are kept after their
    plan is deleted. `responded_by_user_id` records who answered, so the
    invitation follows the account even if its email changes later.
    """
    id: str = Field(default_factory=_new_id, primary_key=True)
    plan_id: str = Field(index=True)
    plan_title: str
    plan_description: str = ""
    invited_email: str = Field(index=True)
    invited_by: str
    invited_by_user_id: str
    status: str = Field(default=INVITATION_PENDING, index=True)
    invited_at: datetime = Field(default_factory=utcnow)
    responded_at: Optional[datetime] = None
    responded_by_user_id: Optional[str] = Field(default=None, index=True)
    left_at: Optional[datetime] = None
