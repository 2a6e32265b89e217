"""CLI script to seed a demo learning plan into the backend DB.

Usage: skillpact-seed [--email EMAIL] [--password PASSWORD] [--weeks N] [--invite EMAIL]

Creates (or reuses) a local account, a plan owned by it with a few
weeks, tasks and subtasks, and optionally a pending invitation.
"""

import argparse
from typing import Optional, Sequence

from sqlmodel import Session

from . import repositories, services
from .auth import AuthContext
from .database import create_db_and_tables, engine

DEMO_TASKS = (
    ("Read the chapter", "Take notes on the key ideas", ("Skim headings", "Write summary")),
    ("Practice exercises", "", ("Easy set", "Hard set")),
)


def seed(
    session: Session,
    email: str,
    password: str,
    weeks: int = 2,
    invite: Optional[str] = None,
    title: str = "Demo learning plan",
) -> dict:
    """Create the demo data and return a summary of what was created."""
    user = repositories.UserRepository(session).get_by_email(email)
    if user is None:
        user = services.AuthService(session).register(email, password, "Demo owner")
    ctx = AuthContext(uid=user.id, email=user.email, display_name=user.display_name)
    plan = services.PlanService(session).create(ctx, title, "Seeded by skillpact-seed")
    content = services.PlanContentService(session)
    task_count = 0
    for _ in range(weeks):
        week = content.add_week(ctx, plan.id)
        for task_title, description, subtasks in DEMO_TASKS:
            task = content.add_task(ctx, plan.id, week.id, task_title, description)
            task_count += 1
            for sub_title in subtasks:
                content.add_subtask(ctx, plan.id, week.id, task.id, sub_title)
    invitation_id = None
    if invite:
        invitation_id = services.InvitationService(session).invite(ctx, plan.id, invite).id
    return {'user_id': user.id, 'plan_id': plan.id, 'weeks': weeks, 'tasks': task_count, 'invitation_id': invitation_id}


def main(argv: Optional[Sequence[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="Seed a demo SkillPact learning plan")
    parser.add_argument("--email", default="demo@example.com")
    parser.add_argument("--password", default="demo1234")
    parser.add_argument("--weeks", type=int, default=2)
    parser.add_argument("--invite", default=None, help="email to invite to the demo plan")
    args = parser.parse_args(argv)

    create_db_and_tables()
    with Session(engine) as session:
        summary = seed(session, args.email, args.password, weeks=args.weeks, invite=args.invite)
    print(f"Seeded plan {summary['plan_id']} with {summary['weeks']} weeks and {summary['tasks']} tasks")
    if summary['invitation_id']:
        print(f"Pending invitation {summary['invitation_id']} sent to {args.invite}")


if __name__ == '__main__':
    main()
