"""FastAPI application entrypoint and HTTP controllers.

This module defines the HTTP endpoints of the SkillPact backend.
Controllers are intentionally thin: they parse the request body (JSON
or URL-encoded form), delegate to services with the caller's
`AuthContext`, and return JSON responses. Service errors are turned
into `{"error": message}` bodies by the exception handlers below.

Endpoints implemented:
- POST /auth/register, POST /auth/login, POST /auth/password
- GET/PUT /api/profile
- GET /api/dashboard
- GET/POST /api/learning-plans, GET/PUT/DELETE /api/learning-plans/{plan_id}
- GET /api/learning-plans/{plan_id}/tree and /progress
- weeks, tasks and subtasks under /api/learning-plans/{plan_id}/weeks
- POST /api/learning-plans/{plan_id}/invitations and /leave
- GET /api/invitations, POST /api/invitations/{invitation_id}/accept|reject
"""

import json
import logging
import time
import uuid
from contextlib import contextmanager
from typing import Optional, Type

import pydantic
from fastapi import FastAPI, Depends, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import __version__, services
from .auth import AuthContext, get_current_user
from .config import settings
from .database import create_db_and_tables, get_session
from .errors import ServiceError
from .schemas import (
    InvitationIn,
    LoginIn,
    PasswordChangeIn,
    PlanIn,
    ProfileUpdate,
    RegisterIn,
    SubtaskIn,
    TaskIn,
    WeekIn,
)

app = FastAPI(title="SkillPact API", version=__version__)
logger = logging.getLogger("skillpact.api")
if not logger.handlers:
    logging.basicConfig(level=settings.LOG_LEVEL)

if settings.ALLOW_DEV_CORS:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

create_db_and_tables()

LOGGED_PREFIXES = ("/api", "/auth")
FORM_CONTENT_TYPES = ("application/x-www-form-urlencoded", "multipart/form-data")


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    req_id = request.headers.get("X-Request-ID", uuid.uuid4().hex)
    request.state.request_id = req_id
    started = time.perf_counter()
    logged = request.url.path.startswith(LOGGED_PREFIXES)
    response: Response
    try:
        response = await call_next(request)
    except Exception:
        elapsed_ms = round((time.perf_counter() - started) * 1000.0, 2)
        if logged:
            logger.exception(
                "request_failed %s",
                json.dumps(
                    {
                        "request_id": req_id,
                        "path": request.url.path,
                        "method": request.method,
                        "duration_ms": elapsed_ms,
                    },
                    ensure_ascii=True,
                ),
            )
        raise
    response.headers["X-Request-ID"] = req_id
    elapsed_ms = round((time.perf_counter() - started) * 1000.0, 2)
    if logged:
        logger.info(
            "request_done %s",
            json.dumps(
                {
                    "request_id": req_id,
                    "path": request.url.path,
                    "method": request.method,
                    "status_code": response.status_code,
                    "duration_ms": elapsed_ms,
                },
                ensure_ascii=True,
            ),
        )
    return response


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    detail = exc.detail
    # raised by the router itself when no route matches
    if exc.status_code == 404 and detail == "Not Found":
        detail = "Route not found"
    return JSONResponse(status_code=exc.status_code, content={"error": detail}, headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(status_code=400, content={"error": _first_error(exc.errors())})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error("unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
    body = {"error": "Something went wrong!"}
    if settings.is_development:
        body["message"] = str(exc)
    # the request middleware is unwinding here and never sets the header
    headers = {"X-Request-ID": getattr(request.state, "request_id", uuid.uuid4().hex)}
    return JSONResponse(status_code=500, content=body, headers=headers)


def _first_error(errors) -> str:
    if not errors:
        return "invalid request"
    first = errors[0]
    field = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    msg = first.get("msg", "invalid value")
    return f"{field}: {msg}" if field else msg


async def read_payload(request: Request) -> dict:
    """Return the request body as a dict, from JSON or form encoding.

    An empty body yields an empty dict.
    """
    content_type = request.headers.get("content-type", "")
    if content_type.startswith(FORM_CONTENT_TYPES):
        form = await request.form()
        return {k: v for k, v in form.items()}
    raw = await request.body()
    if not raw:
        return {}
    try:
        data = json.loads(raw)
    except ValueError:
        raise HTTPException(status_code=400, detail="Malformed JSON body")
    if not isinstance(data, dict):
        raise HTTPException(status_code=400, detail="Request body must be an object")
    return data


def _parse(schema: Type[pydantic.BaseModel], payload: dict):
    try:
        return schema.model_validate(payload)
    except pydantic.ValidationError as e:
        raise HTTPException(status_code=400, detail=_first_error(e.errors()))


@contextmanager
def store_errors(message: str):
    """Turn unexpected database failures into a 500 with `message`."""
    try:
        yield
    except SQLAlchemyError:
        logger.exception(message)
        raise HTTPException(status_code=500, detail=message)


@app.get("/")
def home():
    """Service banner."""
    return {"message": "SkillPact API", "version": __version__, "status": "active"}


@app.get("/health")
def health():
    """Lightweight health check for uptime monitoring."""
    return {"status": "ok"}


# ---------------------------------------------------------------- accounts

@app.post('/auth/register')
def register(payload: dict = Depends(read_payload), db: Session = Depends(get_session)):
    """Register a local account and return the new user's public fields."""
    body = _parse(RegisterIn, payload)
    user = services.AuthService(db).register(body.email, body.password, body.display_name)
    return {'id': user.id, 'email': user.email, 'display_name': user.display_name}


@app.post('/auth/login')
def login(payload: dict = Depends(read_payload), db: Session = Depends(get_session)):
    """Authenticate a user and return a short-lived JWT token.

    The token carries `user_id` and `email` and is signed with the
    configured JWT secret.
    """
    body = _parse(LoginIn, payload)
    token = services.AuthService(db).authenticate(body.email, body.password)
    if not token:
        raise HTTPException(status_code=401, detail='invalid credentials')
    return {'access_token': token}


@app.post('/auth/password')
def change_password(payload: dict = Depends(read_payload), db: Session = Depends(get_session), user: AuthContext = Depends(get_current_user)):
    body = _parse(PasswordChangeIn, payload)
    services.AuthService(db).change_password(user, body.current_password, body.new_password, body.confirm_password)
    return {'message': 'Password changed successfully'}


@app.get('/api/profile')
def get_profile(db: Session = Depends(get_session), user: AuthContext = Depends(get_current_user)):
    return {'profile': services.serialize(services.ProfileService(db).get(user))}


@app.put('/api/profile')
def update_profile(payload: dict = Depends(read_payload), db: Session = Depends(get_session), user: AuthContext = Depends(get_current_user)):
    """Update display name, bio or email of the caller."""
    body = _parse(ProfileUpdate, payload)
    updated = services.ProfileService(db).update(user, body.display_name, body.bio, body.email)
    return {'profile': services.serialize(updated), 'message': 'Profile updated successfully'}


@app.get('/api/dashboard')
def dashboard(db: Session = Depends(get_session), user: AuthContext = Depends(get_current_user)):
    """Owned plans, joined plans and pending invitations of the caller."""
    return services.DashboardService(db).overview(user)


# ---------------------------------------------------------------- plans

@app.get('/api/learning-plans')
def list_plans(db: Session = Depends(get_session), user: AuthContext = Depends(get_current_user)):
    """List the plans owned by the caller."""
    with store_errors('Failed to fetch learning plans'):
        plans = services.PlanService(db).list_owned(user)
    return {'plans': [services.serialize(p) for p in plans]}


@app.get('/api/learning-plans/{plan_id}')
def get_plan(plan_id: str, db: Session = Depends(get_session), user: AuthContext = Depends(get_current_user)):
    with store_errors('Failed to fetch learning plan'):
        plan = services.PlanService(db).get(plan_id)
    return {'plan': services.serialize(plan)}


@app.post('/api/learning-plans', status_code=201)
def create_plan(payload: dict = Depends(read_payload), db: Session = Depends(get_session), user: AuthContext = Depends(get_current_user)):
    """Create a plan owned by the caller. `title` is required."""
    body = _parse(PlanIn, payload)
    with store_errors('Failed to create learning plan'):
        plan = services.PlanService(db).create(user, body.title, body.description)
    return services.serialize(plan)


@app.put('/api/learning-plans/{plan_id}')
def update_plan(plan_id: str, payload: dict = Depends(read_payload), db: Session = Depends(get_session), user: AuthContext = Depends(get_current_user)):
    body = _parse(PlanIn, payload)
    with store_errors('Failed to update learning plan'):
        services.PlanService(db).update(user, plan_id, body.title, body.description)
    return {'message': 'Learning plan updated successfully'}


@app.delete('/api/learning-plans/{plan_id}')
def delete_plan(plan_id: str, db: Session = Depends(get_session), user: AuthContext = Depends(get_current_user)):
    """Delete a plan and everything beneath it (owner only)."""
    with store_errors('Failed to delete learning plan'):
        services.PlanService(db).delete(user, plan_id)
    return {'message': 'Learning plan deleted successfully'}


@app.get('/api/learning-plans/{plan_id}/tree')
def plan_tree(plan_id: str, db: Session = Depends(get_session), user: AuthContext = Depends(get_current_user)):
    """Return the plan with its weeks, tasks, subtasks, members and progress."""
    return services.PlanService(db).load_tree(user, plan_id)


@app.get('/api/learning-plans/{plan_id}/progress')
def plan_progress(plan_id: str, user_id: Optional[str] = None, db: Session = Depends(get_session), user: AuthContext = Depends(get_current_user)):
    """Completion percentage of `user_id` (defaults to the caller)."""
    target = user_id or user.uid
    return {'user_id': target, 'progress': services.PlanService(db).progress(plan_id, target)}


# ---------------------------------------------------------------- weeks, tasks, subtasks

@app.post('/api/learning-plans/{plan_id}/weeks', status_code=201)
def add_week(plan_id: str, payload: dict = Depends(read_payload), db: Session = Depends(get_session), user: AuthContext = Depends(get_current_user)):
    body = _parse(WeekIn, payload)
    week = services.PlanContentService(db).add_week(user, plan_id, body.title)
    return services.serialize(week)


@app.put('/api/learning-plans/{plan_id}/weeks/{week_id}')
def edit_week(plan_id: str, week_id: str, payload: dict = Depends(read_payload), db: Session = Depends(get_session), user: AuthContext = Depends(get_current_user)):
    body = _parse(WeekIn, payload)
    week = services.PlanContentService(db).edit_week(user, plan_id, week_id, body.title)
    return services.serialize(week)


@app.delete('/api/learning-plans/{plan_id}/weeks/{week_id}')
def delete_week(plan_id: str, week_id: str, db: Session = Depends(get_session), user: AuthContext = Depends(get_current_user)):
    services.PlanContentService(db).delete_week(user, plan_id, week_id)
    return {'message': 'Week deleted successfully'}


@app.post('/api/learning-plans/{plan_id}/weeks/{week_id}/tasks', status_code=201)
def add_task(plan_id: str, week_id: str, payload: dict = Depends(read_payload), db: Session = Depends(get_session), user: AuthContext = Depends(get_current_user)):
    body = _parse(TaskIn, payload)
    task = services.PlanContentService(db).add_task(user, plan_id, week_id, body.title, body.description)
    return services.serialize(task)


@app.put('/api/learning-plans/{plan_id}/weeks/{week_id}/tasks/{task_id}')
def edit_task(plan_id: str, week_id: str, task_id: str, payload: dict = Depends(read_payload), db: Session = Depends(get_session), user: AuthContext = Depends(get_current_user)):
    body = _parse(TaskIn, payload)
    task = services.PlanContentService(db).edit_task(user, plan_id, week_id, task_id, body.title, body.description)
    return services.serialize(task)


@app.delete('/api/learning-plans/{plan_id}/weeks/{week_id}/tasks/{task_id}')
def delete_task(plan_id: str, week_id: str, task_id: str, db: Session = Depends(get_session), user: AuthContext = Depends(get_current_user)):
    services.PlanContentService(db).delete_task(user, plan_id, week_id, task_id)
    return {'message': 'Task deleted successfully'}


@app.post('/api/learning-plans/{plan_id}/weeks/{week_id}/tasks/{task_id}/toggle')
def toggle_task(plan_id: str, week_id: str, task_id: str, db: Session = Depends(get_session), user: AuthContext = Depends(get_current_user)):
    """Mark the task done for the caller, or undo it if already done."""
    task = services.PlanContentService(db).toggle_task(user, plan_id, week_id, task_id)
    return services.serialize(task, is_completed=user.uid in task.completed_by)


@app.post('/api/learning-plans/{plan_id}/weeks/{week_id}/tasks/{task_id}/subtasks', status_code=201)
def add_subtask(plan_id: str, week_id: str, task_id: str, payload: dict = Depends(read_payload), db: Session = Depends(get_session), user: AuthContext = Depends(get_current_user)):
    body = _parse(SubtaskIn, payload)
    subtask = services.PlanContentService(db).add_subtask(user, plan_id, week_id, task_id, body.title)
    return services.serialize(subtask)


@app.put('/api/learning-plans/{plan_id}/weeks/{week_id}/tasks/{task_id}/subtasks/{subtask_id}')
def edit_subtask(plan_id: str, week_id: str, task_id: str, subtask_id: str, payload: dict = Depends(read_payload), db: Session = Depends(get_session), user: AuthContext = Depends(get_current_user)):
    body = _parse(SubtaskIn, payload)
    subtask = services.PlanContentService(db).edit_subtask(user, plan_id, week_id, task_id, subtask_id, body.title)
    return services.serialize(subtask)


@app.delete('/api/learning-plans/{plan_id}/weeks/{week_id}/tasks/{task_id}/subtasks/{subtask_id}')
def delete_subtask(plan_id: str, week_id: str, task_id: str, subtask_id: str, db: Session = Depends(get_session), user: AuthContext = Depends(get_current_user)):
    services.PlanContentService(db).delete_subtask(user, plan_id, week_id, task_id, subtask_id)
    return {'message': 'Subtask deleted successfully'}


@app.post('/api/learning-plans/{plan_id}/weeks/{week_id}/tasks/{task_id}/subtasks/{subtask_id}/toggle')
def toggle_subtask(plan_id: str, week_id: str, task_id: str, subtask_id: str, db: Session = Depends(get_session), user: AuthContext = Depends(get_current_user)):
    subtask = services.PlanContentService(db).toggle_subtask(user, plan_id, week_id, task_id, subtask_id)
    return services.serialize(subtask, is_completed=user.uid in subtask.completed_by)


# ---------------------------------------------------------------- invitations

@app.post('/api/learning-plans/{plan_id}/invitations', status_code=201)
def invite_member(plan_id: str, payload: dict = Depends(read_payload), db: Session = Depends(get_session), user: AuthContext = Depends(get_current_user)):
    """Invite a user by email to join the plan (owner only)."""
    body = _parse(InvitationIn, payload)
    inv = services.InvitationService(db).invite(user, plan_id, body.email)
    return services.serialize(inv)


@app.post('/api/learning-plans/{plan_id}/leave')
def leave_plan(plan_id: str, db: Session = Depends(get_session), user: AuthContext = Depends(get_current_user)):
    services.InvitationService(db).leave(user, plan_id)
    return {'message': 'You left the plan'}


@app.get('/api/invitations')
def list_invitations(db: Session = Depends(get_session), user: AuthContext = Depends(get_current_user)):
    """Pending invitations addressed to the caller's email."""
    invitations = services.InvitationService(db).list_pending(user)
    return {'invitations': [services.serialize(i) for i in invitations]}


@app.post('/api/invitations/{invitation_id}/accept')
def accept_invitation(invitation_id: str, db: Session = Depends(get_session), user: AuthContext = Depends(get_current_user)):
    inv = services.InvitationService(db).accept(user, invitation_id)
    return {'invitation': services.serialize(inv)}


@app.post('/api/invitations/{invitation_id}/reject')
def reject_invitation(invitation_id: str, db: Session = Depends(get_session), user: AuthContext = Depends(get_current_user)):
    inv = services.InvitationService(db).reject(user, invitation_id)
    return {'invitation': services.serialize(inv)}
