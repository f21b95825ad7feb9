# pairnotes/api/actions.py

from __future__ import annotations

import logging
from typing import Any, Callable, TypeVar

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError
from starlette.concurrency import run_in_threadpool

from pairnotes.dependencies import ActionEnv, get_action_env, get_session_context
from pairnotes.errors import AuthError, PairNotesError, ValidationError
from pairnotes.models.state import AppState
from pairnotes.services import calendar_cursor, exchange, session
from pairnotes.services.event_log import log_user_event
from pairnotes.services.session import SessionContext

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Actions"])

Payload = dict[str, Any]
Outcome = tuple[dict[str, Any], SessionContext]
_M = TypeVar("_M", bound=BaseModel)


class LoginRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_key: str | None = Field(default=None, alias="userKey")
    password: str | None = ""


class SetPasswordRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    new_password: str | None = Field(default=None, alias="newPassword")


class SubmitEvaluationRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    score: int | None = None
    evaluation_text: str | None = Field(default=None, alias="evaluationText")


class ChangeMonthRequest(BaseModel):
    direction: str | None = None


def _parse(model: type[_M], payload: Payload) -> _M:
    try:
        return model.model_validate(payload)
    except PydanticValidationError as exc:
        first = exc.errors()[0]
        field = ".".join(str(part) for part in first.get("loc", ())) or "request"
        raise ValidationError(f"Invalid {field}: {first.get('msg', 'bad value')}") from exc


def _view(state: AppState, ctx: SessionContext, env: ActionEnv) -> dict[str, Any]:
    """Full state for the caller, plus what Presentation needs to draw today's controls and the calendar."""
    today = env.clock.today()
    year, month = calendar_cursor.current_month(state)
    grid = calendar_cursor.month_matrix(
        state,
        year,
        month,
        viewer_key=ctx.active_key,
        today=today,
        first_weekday=env.settings.first_weekday,
    )
    out: dict[str, Any] = {
        "appData": exchange.public_state(state, viewer_key=ctx.active_key, today=today),
        "calendar": grid.to_public(),
    }
    if ctx.active_key:
        out["todayStatus"] = exchange.today_status(state, ctx.active_key, today).to_public()
    return out


def initialize_app(payload: Payload, ctx: SessionContext, env: ActionEnv) -> Outcome:
    state = env.store.load()
    ctx, pending = session.consume_pending(ctx)
    response: dict[str, Any] = {
        "success": True,
        "message": "",
        "activeUserSessionKey": session.active_user(ctx),
        **_view(state, ctx, env),
    }
    if pending:
        response["pendingLoginAttemptUserKey"] = pending
    return response, ctx


def login(payload: Payload, ctx: SessionContext, env: ActionEnv) -> Outcome:
    req = _parse(LoginRequest, payload)
    try:
        with env.store.transaction() as state:
            ctx = session.login(state, req.user_key, req.password)
            user_name = state.user(ctx.active_key).name
    except AuthError:
        log_user_event(user_key=None, event="login_failed", meta={"target": str(req.user_key)})
        raise

    log_user_event(user_key=ctx.active_key, event="login")
    return {
        "success": True,
        "message": "Logged in.",
        "activeUserSessionKey": ctx.active_key,
        "userName": user_name,
    }, ctx


def switch_user(payload: Payload, ctx: SessionContext, env: ActionEnv) -> Outcome:
    was_active = ctx.active_key
    new_ctx = session.request_switch(ctx, env.store.load())
    log_user_event(user_key=was_active, event="switch_user", meta={"pending": new_ctx.pending_key})
    message = "Switching user..." if was_active else "Ready to switch user..."
    return {"success": True, "message": message}, new_ctx


def set_password(payload: Payload, ctx: SessionContext, env: ActionEnv) -> Outcome:
    session.require_active(ctx)
    req = _parse(SetPasswordRequest, payload)
    with env.store.transaction() as state:
        session.set_password(ctx, state, req.new_password)
    log_user_event(
        user_key=ctx.active_key,
        event="set_password",
        meta={"cleared": not req.new_password},
    )
    return {"success": True, "message": "Password updated."}, ctx


def submit_evaluation(payload: Payload, ctx: SessionContext, env: ActionEnv) -> Outcome:
    try:
        session.require_active(ctx)
        req = _parse(SubmitEvaluationRequest, payload)
        with env.store.transaction() as state:
            evaluation = exchange.submit(ctx, state, req.score, req.evaluation_text, now=env.clock.now())
    except PairNotesError as exc:
        log_user_event(
            user_key=ctx.active_key,
            event="evaluation_submit_rejected",
            meta={"reason": type(exc).__name__},
        )
        raise

    log_user_event(user_key=ctx.active_key, event="evaluation_submitted", meta={"score": evaluation.score})
    return {"success": True, "message": "Evaluation submitted.", **_view(state, ctx, env)}, ctx


def mark_evaluation_viewed(payload: Payload, ctx: SessionContext, env: ActionEnv) -> Outcome:
    with env.store.transaction() as state:
        entry, first_view = exchange.mark_viewed(ctx, state, now=env.clock.now())

    if first_view:
        log_user_event(user_key=ctx.active_key, event="evaluation_viewed")
    return {
        "success": True,
        "message": "Evaluation marked as viewed.",
        "received": entry.model_dump(by_alias=True, mode="json"),
        **_view(state, ctx, env),
    }, ctx


def change_calendar_month(payload: Payload, ctx: SessionContext, env: ActionEnv) -> Outcome:
    req = _parse(ChangeMonthRequest, payload)
    with env.store.transaction() as state:
        new_date = calendar_cursor.shift(state, req.direction)

    log_user_event(
        user_key=ctx.active_key,
        event="calendar_shifted",
        meta={"direction": req.direction or "next", "calendar_date": new_date.isoformat()},
    )
    return {
        "success": True,
        "message": "",
        "newCalendarDate": new_date.isoformat(),
        **_view(state, ctx, env),
    }, ctx


_HANDLERS: dict[str, Callable[[Payload, SessionContext, ActionEnv], Outcome]] = {
    "initialize_app": initialize_app,
    "login": login,
    "switch_user": switch_user,
    "set_password": set_password,
    "submit_evaluation": submit_evaluation,
    "mark_evaluation_viewed": mark_evaluation_viewed,
    "change_calendar_month": change_calendar_month,
}


async def _read_payload(request: Request) -> Payload:
    content_type = request.headers.get("content-type", "")
    if content_type.startswith("application/json"):
        try:
            body = await request.json()
        except ValueError as exc:
            raise ValidationError("Malformed JSON body.") from exc
        if not isinstance(body, dict):
            raise ValidationError("Request body must be a JSON object.")
        return body
    form = await request.form()
    return {key: value for key, value in form.items() if isinstance(value, str)}


def _failure(exc: PairNotesError) -> JSONResponse:
    # HTTP status stays 200; `success` carries the outcome
    return JSONResponse(content={"success": False, "message": exc.message})


@router.post("")
async def handle_action(
    request: Request,
    env: ActionEnv = Depends(get_action_env),
    ctx: SessionContext = Depends(get_session_context),
):
    try:
        payload = await _read_payload(request)
    except ValidationError as exc:
        return _failure(exc)

    action = payload.get("action")
    handler = _HANDLERS.get(action) if isinstance(action, str) else None
    if handler is None:
        return _failure(PairNotesError("Invalid action."))

    try:
        response, new_ctx = await run_in_threadpool(handler, payload, ctx, env)
    except PairNotesError as exc:
        logger.info("Action %s rejected (%s): %s", action, exc.status_code, exc.message)
        return _failure(exc)

    new_ctx.write_to(request.session)
    return response
