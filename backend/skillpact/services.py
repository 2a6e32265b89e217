"""Business logic services used by HTTP controllers.

This module holds small service classes that coordinate repositories
and domain rules. Services are intentionally thin: they validate input,
check the caller's capabilities on a plan, persist through repositories
and return either model instances or plain dict payloads for composite
views (plan tree, dashboard).

Every operation that acts on behalf of a user receives the caller's
`AuthContext` explicitly. Failures are raised as the typed errors from
`skillpact.errors`.
"""

import logging
from typing import Dict, List, Optional

from passlib.context import CryptContext
from sqlmodel import Session

from . import models, repositories
from .auth import AuthContext, create_token
from .errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from .utils.progress import calculate_progress
from .utils.roles import PlanRole, capabilities_for, resolve_role

logger = logging.getLogger(__name__)

PWD_CTX = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
MIN_PASSWORD_LENGTH = 6


def serialize(obj, **extra) -> dict:
    """Dump a model to a dict, dropping credentials and adding `extra` keys."""
    data = obj.model_dump(exclude={"password_hash"})
    data.update(extra)
    return data


def _required(value: Optional[str], message: str = 'Title is required') -> str:
    if value is None or not value.strip():
        raise ValidationError(message)
    return value.strip()


class AuthService:
    """Local account operations (register, authenticate, change password)."""
    def __init__(self, session: Session):
        self.session = session
        self.user_repo = repositories.UserRepository(session)

    def register(self, email: str, password: str, display_name: Optional[str] = None) -> models.User:
        """Create a new user with a hashed password.

        Raises `ConflictError` when the email is already registered.
        """
        if len(password) < MIN_PASSWORD_LENGTH:
            raise ValidationError(f'Password must be at least {MIN_PASSWORD_LENGTH} characters')
        if self.user_repo.get_by_email(email):
            raise ConflictError('Email already registered')
        user = models.User(
            email=email,
            display_name=(display_name or '').strip() or email.split('@')[0],
            password_hash=PWD_CTX.hash(password),
        )
        return self.user_repo.create(user)

    def authenticate(self, email: str, password: str) -> Optional[str]:
        """Verify credentials and return a signed JWT token on success.

        Returns `None` if authentication fails.
        """
        user = self.user_repo.get_by_email(email)
        if not user or not user.password_hash:
            return None
        if not PWD_CTX.verify(password, user.password_hash):
            return None
        return create_token(user.id, user.email)

    def change_password(self, ctx: AuthContext, current_password: str, new_password: str, confirm_password: str) -> None:
        if len(new_password) < MIN_PASSWORD_LENGTH:
            raise ValidationError(f'Password must be at least {MIN_PASSWORD_LENGTH} characters')
        if new_password != confirm_password:
            raise ValidationError('Passwords do not match')
        user = self.user_repo.get(ctx.uid)
        if not user or not user.password_hash or not PWD_CTX.verify(current_password, user.password_hash):
            raise ValidationError('Current password is incorrect')
        user.password_hash = PWD_CTX.hash(new_password)
        user.updated_at = models.utcnow()
        self.user_repo.save(user)


class ProfileService:
    """Read and edit the caller's own user record."""
    def __init__(self, session: Session):
        self.session = session
        self.user_repo = repositories.UserRepository(session)

    def get(self, ctx: AuthContext) -> models.User:
        user = self.user_repo.get(ctx.uid)
        if not user:
            raise NotFoundError('User not found')
        return user

    def update(
        self,
        ctx: AuthContext,
        display_name: Optional[str] = None,
        bio: Optional[str] = None,
        email: Optional[str] = None,
    ) -> models.User:
        """Update display name, bio and email; `None` leaves a field unchanged."""
        user = self.get(ctx)
        if display_name is not None:
            user.display_name = display_name.strip()
        if bio is not None:
            user.bio = bio
        if email is not None and email.lower() != user.email.lower():
            other = self.user_repo.get_by_email(email)
            if other and other.id != user.id:
                raise ConflictError('Email already in use')
            user.email = email
        user.updated_at = models.utcnow()
        return self.user_repo.save(user)


class PlanService:
    """Plan CRUD, role resolution and nested tree assembly."""
    def __init__(self, session: Session):
        self.session = session
        self.plans = repositories.PlanRepository(session)
        self.weeks = repositories.WeekRepository(session)
        self.tasks = repositories.TaskRepository(session)
        self.subtasks = repositories.SubtaskRepository(session)
        self.members = repositories.MembershipRepository(session)

    def get(self, plan_id: str) -> models.LearningPlan:
        plan = self.plans.get(plan_id)
        if not plan:
            raise NotFoundError('Learning plan not found')
        return plan

    def list_owned(self, ctx: AuthContext) -> List[models.LearningPlan]:
        return self.plans.list_by_owner(ctx.uid)

    def create(self, ctx: AuthContext, title: Optional[str], description: Optional[str] = None) -> models.LearningPlan:
        plan = models.LearningPlan(
            title=_required(title),
            description=(description or '').strip(),
            owner_id=ctx.uid,
        )
        plan = self.plans.save(plan)
        logger.info("plan created id=%s owner=%s", plan.id, ctx.uid)
        return plan

    def update(self, ctx: AuthContext, plan_id: str, title: Optional[str] = None, description: Optional[str] = None) -> models.LearningPlan:
        """Update title/description of a plan the caller owns.

        An empty title is ignored rather than clearing the field.
        """
        plan = self.get(plan_id)
        if plan.owner_id != ctx.uid:
            raise ForbiddenError('Not authorized to update this plan')
        if title is not None and title.strip():
            plan.title = title.strip()
        if description is not None:
            plan.description = description
        plan.updated_at = models.utcnow()
        return self.plans.save(plan)

    def delete(self, ctx: AuthContext, plan_id: str) -> None:
        plan = self.get(plan_id)
        if plan.owner_id != ctx.uid:
            raise ForbiddenError('Not authorized to delete this plan')
        self.plans.delete_cascade(plan)
        logger.info("plan deleted id=%s", plan_id)

    def role_for(self, plan: models.LearningPlan, user_id: str) -> PlanRole:
        member = self.members.get(plan.id, user_id)
        member_ids = [user_id] if member and member.status == models.MEMBERSHIP_ACCEPTED else []
        return resolve_role(plan.owner_id, user_id, member_ids)

    def require(self, ctx: AuthContext, plan_id: str, capability: str, message: str) -> models.LearningPlan:
        """Return the plan if the caller's role grants `capability`.

        Raises `NotFoundError` for a missing plan before checking access.
        """
        plan = self.get(plan_id)
        caps = capabilities_for(self.role_for(plan, ctx.uid))
        if not getattr(caps, capability):
            raise ForbiddenError(message)
        return plan

    def assemble_weeks(self, plan_id: str, viewer_id: Optional[str] = None) -> List[Dict]:
        """Load weeks, their tasks and the tasks' subtasks as nested dicts.

        Weeks are ordered by `week_number`. Reads are issued one
        collection at a time, so the cost grows with weeks x tasks.
        """
        out = []
        for week in self.weeks.list_for_plan(plan_id):
            tasks = []
            for task in self.tasks.list_for_week(week.id):
                subtasks = [
                    serialize(s, is_completed=viewer_id in s.completed_by)
                    for s in self.subtasks.list_for_task(task.id)
                ]
                tasks.append(serialize(task, is_completed=viewer_id in task.completed_by, subtasks=subtasks))
            out.append(serialize(week, tasks=tasks))
        return out

    def load_tree(self, ctx: AuthContext, plan_id: str) -> Dict:
        """Return the full plan view for the caller.

        The payload contains the plan, the caller's role and capabilities,
        the nested weeks/tasks/subtasks, the accepted members and the
        progress percentage of the caller and of every participant.
        """
        plan = self.get(plan_id)
        role = self.role_for(plan, ctx.uid)
        weeks = self.assemble_weeks(plan.id, ctx.uid)
        members = self.members.list_for_plan(plan.id, status=models.MEMBERSHIP_ACCEPTED)
        participants = [plan.owner_id] + [m.user_id for m in members]
        return {
            'plan': serialize(plan),
            'role': role.value,
            'capabilities': capabilities_for(role).as_dict(),
            'weeks': weeks,
            'members': [serialize(m, progress=calculate_progress(weeks, m.user_id)) for m in members],
            'progress': {
                'viewer': calculate_progress(weeks, ctx.uid),
                'participants': {uid: calculate_progress(weeks, uid) for uid in participants},
            },
        }

    def progress(self, plan_id: str, user_id: str) -> int:
        plan = self.get(plan_id)
        return calculate_progress(self.assemble_weeks(plan.id), user_id)


class PlanContentService:
    """Weeks, tasks and subtasks of a plan, plus completion toggles.

    Structural changes need the `can_edit` capability (owner); toggles
    need `can_toggle` (owner or member).
    """
    def __init__(self, session: Session):
        self.session = session
        self.plan_service = PlanService(session)
        self.weeks = repositories.WeekRepository(session)
        self.tasks = repositories.TaskRepository(session)
        self.subtasks = repositories.SubtaskRepository(session)

    def _editable(self, ctx: AuthContext, plan_id: str) -> models.LearningPlan:
        return self.plan_service.require(ctx, plan_id, 'can_edit', 'Only the plan owner can change this plan')

    def _week(self, plan_id: str, week_id: str) -> models.Week:
        week = self.weeks.get(plan_id, week_id)
        if not week:
            raise NotFoundError('Week not found')
        return week

    def _task(self, plan_id: str, week_id: str, task_id: str) -> models.Task:
        self._week(plan_id, week_id)
        task = self.tasks.get(week_id, task_id)
        if not task:
            raise NotFoundError('Task not found')
        return task

    def _subtask(self, plan_id: str, week_id: str, task_id: str, subtask_id: str) -> models.Subtask:
        self._task(plan_id, week_id, task_id)
        subtask = self.subtasks.get(task_id, subtask_id)
        if not subtask:
            raise NotFoundError('Subtask not found')
        return subtask

    @staticmethod
    def _toggle(item, user_id: str) -> None:
        done = list(item.completed_by or [])
        if user_id in done:
            done = [uid for uid in done if uid != user_id]
        else:
            done.append(user_id)
        # reassign so the JSON column is flagged as modified
        item.completed_by = done

    def add_week(self, ctx: AuthContext, plan_id: str, title: Optional[str] = None) -> models.Week:
        """Append a week numbered `count(existing weeks) + 1`."""
        plan = self._editable(ctx, plan_id)
        week_number = self.weeks.count_for_plan(plan.id) + 1
        title = (title or '').strip() or f'Week {week_number}'
        return self.weeks.save(models.Week(plan_id=plan.id, week_number=week_number, title=title))

    def edit_week(self, ctx: AuthContext, plan_id: str, week_id: str, title: Optional[str]) -> models.Week:
        self._editable(ctx, plan_id)
        week = self._week(plan_id, week_id)
        week.title = _required(title)
        return self.weeks.save(week)

    def delete_week(self, ctx: AuthContext, plan_id: str, week_id: str) -> None:
        """Delete a week and its content. Other weeks keep their numbers."""
        self._editable(ctx, plan_id)
        self.weeks.delete(self._week(plan_id, week_id))

    def add_task(self, ctx: AuthContext, plan_id: str, week_id: str, title: Optional[str], description: Optional[str] = None) -> models.Task:
        self._editable(ctx, plan_id)
        week = self._week(plan_id, week_id)
        task = models.Task(week_id=week.id, title=_required(title), description=(description or '').strip())
        return self.tasks.save(task)

    def edit_task(self, ctx: AuthContext, plan_id: str, week_id: str, task_id: str, title: Optional[str] = None, description: Optional[str] = None) -> models.Task:
        self._editable(ctx, plan_id)
        task = self._task(plan_id, week_id, task_id)
        if title is not None:
            task.title = _required(title)
        if description is not None:
            task.description = description
        return self.tasks.save(task)

    def delete_task(self, ctx: AuthContext, plan_id: str, week_id: str, task_id: str) -> None:
        self._editable(ctx, plan_id)
        self.tasks.delete(self._task(plan_id, week_id, task_id))

    def toggle_task(self, ctx: AuthContext, plan_id: str, week_id: str, task_id: str) -> models.Task:
        """Flip the caller's completion mark on a task."""
        self.plan_service.require(ctx, plan_id, 'can_toggle', 'Only plan participants can update progress')
        task = self._task(plan_id, week_id, task_id)
        self._toggle(task, ctx.uid)
        return self.tasks.save(task)

    def add_subtask(self, ctx: AuthContext, plan_id: str, week_id: str, task_id: str, title: Optional[str]) -> models.Subtask:
        self._editable(ctx, plan_id)
        task = self._task(plan_id, week_id, task_id)
        return self.subtasks.save(models.Subtask(task_id=task.id, title=_required(title)))

    def edit_subtask(self, ctx: AuthContext, plan_id: str, week_id: str, task_id: str, subtask_id: str, title: Optional[str]) -> models.Subtask:
        self._editable(ctx, plan_id)
        subtask = self._subtask(plan_id, week_id, task_id, subtask_id)
        subtask.title = _required(title)
        return self.subtasks.save(subtask)

    def delete_subtask(self, ctx: AuthContext, plan_id: str, week_id: str, task_id: str, subtask_id: str) -> None:
        self._editable(ctx, plan_id)
        self.subtasks.delete(self._subtask(plan_id, week_id, task_id, subtask_id))

    def toggle_subtask(self, ctx: AuthContext, plan_id: str, week_id: str, task_id: str, subtask_id: str) -> models.Subtask:
        self.plan_service.require(ctx, plan_id, 'can_toggle', 'Only plan participants can update progress')
        subtask = self._subtask(plan_id, week_id, task_id, subtask_id)
        self._toggle(subtask, ctx.uid)
        return self.subtasks.save(subtask)


class InvitationService:
    """Invitation state machine.

    pending -> accepted | rejected, and accepted -> left. Acceptance
    creates the membership row and leaving removes it, each in the same
    transaction as the status change.
    """
    def __init__(self, session: Session):
        self.session = session
        self.plan_service = PlanService(session)
        self.invitations = repositories.InvitationRepository(session)
        self.members = repositories.MembershipRepository(session)

    def invite(self, ctx: AuthContext, plan_id: str, email: str) -> models.Invitation:
        """Send an invitation for `email` to join the plan.

        The plan title/description are copied onto the invitation as a
        point-in-time summary. Repeated invitations are not deduplicated.
        """
        plan = self.plan_service.require(ctx, plan_id, 'can_invite', 'Only the plan owner can invite members')
        if email.lower() == ctx.email.lower():
            raise ValidationError('You cannot invite yourself')
        inv = models.Invitation(
            plan_id=plan.id,
            plan_title=plan.title,
            plan_description=plan.description,
            invited_email=email,
            invited_by=ctx.email,
            invited_by_user_id=ctx.uid,
        )
        inv = self.invitations.save(inv)
        logger.info("invitation sent id=%s plan=%s", inv.id, plan.id)
        return inv

    def list_pending(self, ctx: AuthContext) -> List[models.Invitation]:
        return self.invitations.find(ctx.email, status=models.INVITATION_PENDING)

    def _respondable(self, ctx: AuthContext, invitation_id: str) -> models.Invitation:
        inv = self.invitations.get(invitation_id)
        if not inv:
            raise NotFoundError('Invitation not found')
        if inv.invited_email.lower() != ctx.email.lower():
            raise ForbiddenError('This invitation was sent to another user')
        if inv.status != models.INVITATION_PENDING:
            raise ConflictError(f'Invitation is already {inv.status}')
        return inv

    def accept(self, ctx: AuthContext, invitation_id: str) -> models.Invitation:
        inv = self._respondable(ctx, invitation_id)
        plan = self.plan_service.get(inv.plan_id)
        if plan.owner_id == ctx.uid:
            raise ValidationError('You already own this plan')
        inv.status = models.INVITATION_ACCEPTED
        inv.responded_at = models.utcnow()
        inv.responded_by_user_id = ctx.uid
        self.invitations.stage([inv])
        self.members.stage_upsert(plan.id, ctx.uid, ctx.email)
        self.session.commit()
        self.session.refresh(inv)
        logger.info("invitation accepted id=%s plan=%s user=%s", inv.id, plan.id, ctx.uid)
        return inv

    def reject(self, ctx: AuthContext, invitation_id: str) -> models.Invitation:
        inv = self._respondable(ctx, invitation_id)
        inv.status = models.INVITATION_REJECTED
        inv.responded_at = models.utcnow()
        inv.responded_by_user_id = ctx.uid
        inv = self.invitations.save(inv)
        logger.info("invitation rejected id=%s", inv.id)
        return inv

    def leave(self, ctx: AuthContext, plan_id: str) -> List[models.Invitation]:
        """Leave a plan the caller joined.

        The caller's membership row is deleted and every invitation to
        the plan they accepted moves to `left`, in one commit.
        """
        plan = self.plan_service.get(plan_id)
        if plan.owner_id == ctx.uid:
            raise ForbiddenError('The owner cannot leave their own plan')
        member = self.members.get(plan.id, ctx.uid)
        if member is None:
            raise NotFoundError('You are not a member of this plan')
        accepted = self.invitations.accepted_by(plan.id, ctx.uid)
        now = models.utcnow()
        for inv in accepted:
            inv.status = models.INVITATION_LEFT
            inv.left_at = now
        self.invitations.stage(accepted)
        self.session.delete(member)
        self.session.commit()
        logger.info("user left plan plan=%s user=%s", plan.id, ctx.uid)
        return accepted


class DashboardService:
    """Aggregate the caller's owned plans, joined plans and pending invitations."""
    def __init__(self, session: Session):
        self.session = session
        self.plans = repositories.PlanRepository(session)
        self.members = repositories.MembershipRepository(session)
        self.invitations = repositories.InvitationRepository(session)

    def overview(self, ctx: AuthContext) -> Dict:
        """Return `{plans, invitations}` for the dashboard.

        Joined plans come from the caller's membership rows and are
        resolved from the live plan records. Pending invitations are
        returned as sent, with their title/description snapshot.
        """
        plans = [serialize(p, role=PlanRole.OWNER.value) for p in self.plans.list_by_owner(ctx.uid)]
        seen = {p['id'] for p in plans}
        for member in self.members.list_for_user(ctx.uid):
            if member.plan_id in seen:
                continue
            plan = self.plans.get(member.plan_id)
            if not plan:
                continue
            seen.add(plan.id)
            plans.append(serialize(plan, role=PlanRole.MEMBER.value))
        pending = [serialize(inv) for inv in self.invitations.find(ctx.email, status=models.INVITATION_PENDING)]
        return {'plans': plans, 'invitations': pending}
