"""Repository classes encapsulating database operations.

Each repository is small and focused on a single aggregate (users,
plans, weeks, tasks, subtasks, memberships, invitations). Repositories
return SQLModel objects. Single-entity writes commit immediately;
operations that touch several rows (cascading deletes, invitation
acceptance) stage their changes with `stage_*` helpers and leave the
commit to the caller so they land in one transaction.
"""

from typing import Iterable, List, Optional
from sqlmodel import Session, select
from sqlalchemy import func
from . import models


class _Repository:
    def __init__(self, session: Session):
        self.session = session

    def save(self, obj):
        """Persist `obj` and return the refreshed instance."""
        self.session.add(obj)
        self.session.commit()
        self.session.refresh(obj)
        return obj


class UserRepository(_Repository):
    """CRUD operations for `User` objects."""

    def create(self, user: models.User) -> models.User:
        """Persist a new user and return the managed instance."""
        return self.save(user)

    def get(self, user_id: str) -> Optional[models.User]:
        """Get a `User` by primary key (the identity UID)."""
        return self.session.get(models.User, user_id)

    def get_by_email(self, email: str) -> Optional[models.User]:
        """Return a `User` by email (case-insensitive) or `None`."""
        stmt = select(models.User).where(func.lower(models.User.email) == email.lower())
        return self.session.exec(stmt).first()


class PlanRepository(_Repository):
    """CRUD operations for `LearningPlan` records."""

    def get(self, plan_id: str) -> Optional[models.LearningPlan]:
        return self.session.get(models.LearningPlan, plan_id)

    def list_by_owner(self, owner_id: str) -> List[models.LearningPlan]:
        """Return all plans owned by `owner_id`, oldest first."""
        stmt = (
            select(models.LearningPlan)
            .where(models.LearningPlan.owner_id == owner_id)
            .order_by(models.LearningPlan.created_at)
        )
        return self.session.exec(stmt).all()

    def delete_cascade(self, plan: models.LearningPlan) -> None:
        """Delete a plan together with its weeks, tasks, subtasks and members.

        Everything is removed in a single commit. Invitations are left in
        place as history.
        """
        weeks = WeekRepository(self.session)
        for week in weeks.list_for_plan(plan.id):
            weeks.stage_delete(week)
        for member in MembershipRepository(self.session).list_for_plan(plan.id):
            self.session.delete(member)
        self.session.delete(plan)
        self.session.commit()


class WeekRepository(_Repository):
    """Queries and cascading deletes for `Week` rows."""

    def get(self, plan_id: str, week_id: str) -> Optional[models.Week]:
        """Fetch a week only if it belongs to `plan_id`."""
        week = self.session.get(models.Week, week_id)
        if week is None or week.plan_id != plan_id:
            return None
        return week

    def list_for_plan(self, plan_id: str) -> List[models.Week]:
        """Return the plan's weeks ordered by `week_number` ascending."""
        stmt = select(models.Week).where(models.Week.plan_id == plan_id).order_by(models.Week.week_number)
        return self.session.exec(stmt).all()

    def count_for_plan(self, plan_id: str) -> int:
        stmt = select(func.count()).select_from(models.Week).where(models.Week.plan_id == plan_id)
        return self.session.exec(stmt).one()

    def stage_delete(self, week: models.Week) -> None:
        tasks = TaskRepository(self.session)
        for task in tasks.list_for_week(week.id):
            tasks.stage_delete(task)
        self.session.delete(week)

    def delete(self, week: models.Week) -> None:
        """Delete a week and all of its tasks and subtasks."""
        self.stage_delete(week)
        self.session.commit()


class TaskRepository(_Repository):
    """Queries and cascading deletes for `Task` rows."""

    def get(self, week_id: str, task_id: str) -> Optional[models.Task]:
        task = self.session.get(models.Task, task_id)
        if task is None or task.week_id != week_id:
            return None
        return task

    def list_for_week(self, week_id: str) -> List[models.Task]:
        stmt = select(models.Task).where(models.Task.week_id == week_id).order_by(models.Task.created_at)
        return self.session.exec(stmt).all()

    def stage_delete(self, task: models.Task) -> None:
        for subtask in SubtaskRepository(self.session).list_for_task(task.id):
            self.session.delete(subtask)
        self.session.delete(task)

    def delete(self, task: models.Task) -> None:
        """Delete a task and its subtasks."""
        self.stage_delete(task)
        self.session.commit()


class SubtaskRepository(_Repository):
    def get(self, task_id: str, subtask_id: str) -> Optional[models.Subtask]:
        subtask = self.session.get(models.Subtask, subtask_id)
        if subtask is None or subtask.task_id != task_id:
            return None
        return subtask

    def list_for_task(self, task_id: str) -> List[models.Subtask]:
        stmt = select(models.Subtask).where(models.Subtask.task_id == task_id).order_by(models.Subtask.created_at)
        return self.session.exec(stmt).all()

    def delete(self, subtask: models.Subtask) -> None:
        self.session.delete(subtask)
        self.session.commit()


class MembershipRepository(_Repository):
    """Membership rows keyed by (plan_id, user_id)."""

    def get(self, plan_id: str, user_id: str) -> Optional[models.Membership]:
        return self.session.get(models.Membership, (plan_id, user_id))

    def list_for_plan(self, plan_id: str, status: Optional[str] = None) -> List[models.Membership]:
        """List members of a plan, optionally filtered by `status`."""
        stmt = select(models.Membership).where(models.Membership.plan_id == plan_id)
        if status is not None:
            stmt = stmt.where(models.Membership.status == status)
        return self.session.exec(stmt.order_by(models.Membership.joined_at)).all()

    def list_for_user(self, user_id: str) -> List[models.Membership]:
        stmt = select(models.Membership).where(
            models.Membership.user_id == user_id,
            models.Membership.status == models.MEMBERSHIP_ACCEPTED,
        )
        return self.session.exec(stmt.order_by(models.Membership.joined_at)).all()

    def stage_upsert(self, plan_id: str, user_id: str, email: str) -> models.Membership:
        """Create or overwrite the membership row for (plan, user) without committing."""
        member = self.get(plan_id, user_id)
        if member is None:
            member = models.Membership(plan_id=plan_id, user_id=user_id, email=email)
        else:
            member.email = email
            member.status = models.MEMBERSHIP_ACCEPTED
            member.joined_at = models.utcnow()
        self.session.add(member)
        return member


class InvitationRepository(_Repository):
    """Queries over the standalone invitations table."""

    def get(self, invitation_id: str) -> Optional[models.Invitation]:
        return self.session.get(models.Invitation, invitation_id)

    def find(
        self,
        invited_email: str,
        status: Optional[str] = None,
        plan_id: Optional[str] = None,
    ) -> List[models.Invitation]:
        """Return invitations for an email, filtered by status and plan.

        Email matching is case-insensitive; results are oldest first.
        """
        stmt = select(models.Invitation).where(func.lower(models.Invitation.invited_email) == invited_email.lower())
        if status is not None:
            stmt = stmt.where(models.Invitation.status == status)
        if plan_id is not None:
            stmt = stmt.where(models.Invitation.plan_id == plan_id)
        return self.session.exec(stmt.order_by(models.Invitation.invited_at)).all()

    def stage(self, invitations: Iterable[models.Invitation]) -> None:
        for inv in invitations:
            self.session.add(inv)

    def accepted_by(self, plan_id: str, user_id: str) -> List[models.Invitation]:
        """Accepted invitations to `plan_id` answered by `user_id`."""
        stmt = select(models.Invitation).where(
            models.Invitation.plan_id == plan_id,
            models.Invitation.responded_by_user_id == user_id,
            models.Invitation.status == models.INVITATION_ACCEPTED,
        )
        return self.session.exec(stmt).all()
