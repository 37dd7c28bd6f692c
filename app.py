"""Application entry point for the Action Flows service."""

from __future__ import annotations

from dataclasses import asdict, dataclass, replace
from datetime import UTC, date, datetime
from pathlib import Path
from typing import Any
from uuid import uuid4

import structlog
from flask import Flask, g, jsonify, request
from pydantic import ValidationError
from sqlalchemy import text
from structlog.contextvars import bind_contextvars, clear_contextvars
from werkzeug.exceptions import HTTPException

from action_flows.actions import (
    is_admin,
    parse_approval_payload,
    parse_completion_payload,
    parse_task_ref,
    parse_text_payload,
)
from action_flows.background import run_async
from action_flows.config import get_settings
from action_flows.dashboard import (
    PaginationState,
    count_completed_flows,
    list_flows,
    list_flows_for_feed,
    normalise_filters,
)
from action_flows.db import session_scope
from action_flows.flows.feed import DismissalState, build_feed
from action_flows.flows.models import FlowDraft, FlowUpdate
from action_flows.flows.notifications import (
    TYPE_ASSIGNMENT,
    TYPE_MESSAGE,
    TYPE_TASK_REFUSED,
    PreferenceStore,
    create_notification,
    list_notifications,
    mark_notifications_read,
    notify_message_recipient,
)
from action_flows.flows.messages import count_unread_messages_in_flow
from action_flows.flows.sections import InputNotFoundError, SectionNotFoundError, TaskNotFoundError
from action_flows.flows.status import describe_flow
from action_flows.flows.storage import (
    FlowChange,
    FlowNotFoundError,
    FlowRecord,
    add_task_message,
    create_flow,
    delete_flow,
    delete_section,
    delete_task,
    get_flow,
    mark_task_messages_read,
    update_flow_details,
    update_task_approval,
    update_task_completion,
    update_task_input,
)
from action_flows.flows.transitions import DECISION_REFUSE, TaskTransitionError
from action_flows.logging_config import configure_logging
from action_flows.models import OptimisticLockError
from action_flows.users import (
    DuplicateUserError,
    UserCreate,
    UserNotFoundError,
    UserUpdate,
    create_user,
    delete_user,
    get_user,
    list_users,
    update_user,
)

USER_HEADER = "X-User-Id"
TRACE_HEADER = "X-Trace-Id"

NOT_FOUND_ERRORS = (
    FlowNotFoundError,
    SectionNotFoundError,
    TaskNotFoundError,
    InputNotFoundError,
    UserNotFoundError,
)


class AccessDenied(Exception):
    """Raised when the caller may not act on the addressed resource."""


class MissingCaller(Exception):
    """Raised when a request carries no caller identity."""


@dataclass(frozen=True)
class Caller:
    id: str
    name: str
    is_admin: bool


def _json_value(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


def _error(code: str, message: str, status: int):
    response = jsonify({"error": code, "message": message, "trace_id": g.get("trace_id")})
    response.status_code = status
    return response


def _current_caller() -> Caller:
    user_id = (request.headers.get(USER_HEADER) or "").strip()
    if not user_id:
        raise MissingCaller("Requests must identify the caller.")

    user = get_user(user_id)
    settings = get_settings()
    admin = is_admin(user_id, role=user.role if user else None, admin_ids=settings.admin_user_ids)
    if user is None and not admin:
        raise AccessDenied("Unknown user.")
    if user is not None and user.status != "active" and user_id not in settings.admin_user_ids:
        raise AccessDenied("This account is inactive.")
    bind_contextvars(user_id=user_id)
    return Caller(id=user_id, name=user.name if user else user_id, is_admin=admin)


def _require_admin(caller: Caller) -> None:
    if not caller.is_admin:
        raise AccessDenied("Administrator access required.")


def _require_flow_access(caller: Caller, flow: FlowRecord) -> None:
    if not caller.is_admin and flow.user_id != caller.id:
        raise AccessDenied("This action flow is not assigned to you.")


def _payload() -> dict:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValueError("Request body must be a JSON object.")
    return data


def _serialize_flow(flow: FlowRecord, *, viewer_id: str) -> dict:
    derived = describe_flow(flow)
    return {
        "id": flow.id,
        "title": flow.title,
        "description": flow.description,
        "deadline": _json_value(flow.deadline),
        "user_id": flow.user_id,
        "stored_status": flow.status,
        "created_by": flow.created_by,
        "created_at": _json_value(flow.created_at),
        "updated_at": _json_value(flow.updated_at),
        "version": flow.version,
        "sections": flow.sections,
        "unread_messages": count_unread_messages_in_flow(flow, viewer_id),
        **derived,
    }


def _serialize_summary(summary) -> dict:
    data = asdict(summary)
    return {key: _json_value(value) for key, value in data.items()}


def _serialize_notification(notification) -> dict:
    return {key: _json_value(value) for key, value in asdict(notification).items()}


def _flow_response(change_or_flow: FlowChange | FlowRecord, caller: Caller, status: int = 200):
    flow = change_or_flow.flow if isinstance(change_or_flow, FlowChange) else change_or_flow
    response = jsonify({"flow": _serialize_flow(flow, viewer_id=caller.id)})
    response.status_code = status
    return response


def _schedule_notification(**kwargs: Any) -> None:
    run_async(create_notification, trace_id=g.get("trace_id"), **kwargs)


def _notify_assignment(flow: FlowRecord, caller: Caller) -> None:
    if not flow.user_id or flow.user_id == caller.id:
        return
    _schedule_notification(
        user_id=flow.user_id,
        flow_id=flow.id,
        message=f'You have been assigned to "{flow.title}"',
        sender_id=caller.id,
        sender_name=caller.name,
        type=TYPE_ASSIGNMENT,
    )


def _register_error_handlers(flask_app: Flask) -> None:
    """Map domain exceptions to JSON responses carrying the trace identifier."""

    @flask_app.errorhandler(MissingCaller)
    def handle_missing_caller(error: MissingCaller):
        return _error("missing_user", str(error), 401)

    @flask_app.errorhandler(AccessDenied)
    def handle_access_denied(error: AccessDenied):
        return _error("forbidden", str(error), 403)

    def handle_not_found(error: LookupError):
        return _error("not_found", str(error), 404)

    for error_class in NOT_FOUND_ERRORS:
        flask_app.register_error_handler(error_class, handle_not_found)

    @flask_app.errorhandler(ValidationError)
    def handle_validation_error(error: ValidationError):
        response = jsonify(
            {
                "error": "invalid_payload",
                "message": "Request payload failed validation.",
                "details": error.errors(include_url=False, include_context=False),
                "trace_id": g.get("trace_id"),
            }
        )
        response.status_code = 400
        return response

    @flask_app.errorhandler(ValueError)
    def handle_value_error(error: ValueError):
        return _error("invalid_payload", str(error), 400)

    @flask_app.errorhandler(TaskTransitionError)
    def handle_transition_error(error: TaskTransitionError):
        return _error("conflict", str(error), 409)

    @flask_app.errorhandler(OptimisticLockError)
    def handle_lock_error(error: OptimisticLockError):
        structlog.get_logger().warning("flow_update_conflict", error=str(error))
        return _error("conflict", "The action flow was changed by someone else. Reload and retry.", 409)

    @flask_app.errorhandler(DuplicateUserError)
    def handle_duplicate_user(error: DuplicateUserError):
        return _error("conflict", str(error), 409)

    @flask_app.errorhandler(Exception)
    def handle_unexpected_error(error: Exception):  # type: ignore[override]
        if isinstance(error, HTTPException):
            return _error(error.name.lower().replace(" ", "_"), error.description or "", error.code or 500)
        trace_id = g.get("trace_id") or str(uuid4())
        flask_app.logger.exception(
            "Unhandled application error", extra={"trace_id": trace_id}, exc_info=error
        )
        response = jsonify({"error": "internal_server_error", "trace_id": trace_id})
        response.status_code = 500
        return response


def _register_request_hooks(flask_app: Flask) -> None:
    @flask_app.before_request
    def bind_trace_id():
        trace_id = request.headers.get(TRACE_HEADER) or str(uuid4())
        g.trace_id = trace_id
        bind_contextvars(trace_id=trace_id)

    @flask_app.after_request
    def attach_trace_id(response):
        trace_id = g.get("trace_id")
        if trace_id:
            response.headers[TRACE_HEADER] = trace_id
        return response

    @flask_app.teardown_request
    def clear_trace_id(_exc):
        clear_contextvars()


def _handle_list_flows():
    caller = _current_caller()
    settings = get_settings()
    log = structlog.get_logger()

    filters = normalise_filters(
        statuses=request.args.getlist("status") or None,
        assignee_id=request.args.get("assignee_id") if caller.is_admin else None,
        sort_by=request.args.get("sort_by"),
        sort_order=request.args.get("sort_order"),
        limit=request.args.get("limit"),
        offset=request.args.get("offset"),
        default_limit=settings.dashboard_limit,
    )

    with session_scope() as session:
        summaries = list_flows(
            session,
            filters=replace(filters, limit=filters.limit + 1),
            viewer_id=caller.id,
            today=datetime.now(UTC).date(),
            warning_days=settings.deadline_warning_days,
            assigned_to=None if caller.is_admin else caller.id,
        )

    has_more = len(summaries) > filters.limit
    if has_more:
        summaries = summaries[: filters.limit]
    pagination = PaginationState(
        offset=filters.offset,
        limit=filters.limit,
        has_previous=filters.offset > 0,
        has_more=has_more,
    )

    log.info("flows_listed", count=len(summaries), admin=caller.is_admin)
    return jsonify(
        {
            "flows": [_serialize_summary(summary) for summary in summaries],
            "completed_count": count_completed_flows(summaries),
            "pagination": asdict(pagination),
        }
    )


def _handle_create_flow():
    caller = _current_caller()
    _require_admin(caller)

    draft = FlowDraft.model_validate(_payload())
    flow = create_flow(draft, created_by=caller.id)
    _notify_assignment(flow, caller)
    return _flow_response(flow, caller, status=201)


def _handle_get_flow(flow_id: str):
    caller = _current_caller()
    flow = get_flow(flow_id)
    _require_flow_access(caller, flow)
    return _flow_response(flow, caller)


def _handle_update_flow(flow_id: str):
    caller = _current_caller()
    _require_admin(caller)

    update = FlowUpdate.model_validate(_payload())
    change = update_flow_details(flow_id, update, changed_by=caller.id)
    if change.flow.user_id != change.previous_user_id:
        _notify_assignment(change.flow, caller)
    return _flow_response(change, caller)


def _handle_delete_flow(flow_id: str):
    caller = _current_caller()
    _require_admin(caller)

    delete_flow(flow_id)
    return "", 204


def _handle_delete_section(flow_id: str, section_id: str):
    caller = _current_caller()
    _require_admin(caller)

    change = delete_section(flow_id, section_id, changed_by=caller.id)
    return _flow_response(change, caller)


def _handle_delete_task(flow_id: str, section_id: str, task_id: str):
    caller = _current_caller()
    _require_admin(caller)

    ref = parse_task_ref(flow_id, section_id, task_id)
    change = delete_task(ref.flow_id, ref.section_id, ref.task_id, changed_by=caller.id)
    return _flow_response(change, caller)


def _handle_task_completion(flow_id: str, section_id: str, task_id: str):
    caller = _current_caller()
    ref = parse_task_ref(flow_id, section_id, task_id)
    _require_flow_access(caller, get_flow(ref.flow_id))

    completed = parse_completion_payload(_payload())
    change = update_task_completion(
        ref.flow_id, ref.section_id, ref.task_id, completed, changed_by=caller.id
    )
    return _flow_response(change, caller)


def _handle_task_approval(flow_id: str, section_id: str, task_id: str):
    caller = _current_caller()
    _require_admin(caller)

    ref = parse_task_ref(flow_id, section_id, task_id)
    decision = parse_approval_payload(_payload())
    change = update_task_approval(ref.flow_id, ref.section_id, ref.task_id, decision, admin_id=caller.id)

    if decision == DECISION_REFUSE and change.flow.user_id:
        task_title = (change.task or {}).get("title") or "Untitled Task"
        _schedule_notification(
            user_id=change.flow.user_id,
            flow_id=ref.flow_id,
            section_id=ref.section_id,
            task_id=ref.task_id,
            message=f'Task "{task_title}" was refused and needs attention',
            sender_id=caller.id,
            sender_name=caller.name,
            type=TYPE_TASK_REFUSED,
        )
    return _flow_response(change, caller)


def _handle_task_input(flow_id: str, section_id: str, task_id: str, input_id: str):
    caller = _current_caller()
    ref = parse_task_ref(flow_id, section_id, task_id)
    _require_flow_access(caller, get_flow(ref.flow_id))

    payload = _payload()
    value = payload.get("value")
    if value is not None and not isinstance(value, str):
        raise ValueError("value must be a string or null.")
    change = update_task_input(
        ref.flow_id, ref.section_id, ref.task_id, input_id, value, changed_by=caller.id
    )
    return _flow_response(change, caller)


def _handle_send_message(flow_id: str, section_id: str, task_id: str):
    caller = _current_caller()
    ref = parse_task_ref(flow_id, section_id, task_id)
    _require_flow_access(caller, get_flow(ref.flow_id))

    message_text = parse_text_payload(_payload())
    change = add_task_message(
        ref.flow_id,
        ref.section_id,
        ref.task_id,
        message_text,
        sender_id=caller.id,
        sender_name=caller.name,
    )
    run_async(
        notify_message_recipient,
        flow_id=ref.flow_id,
        assignee_id=change.flow.user_id,
        section_id=ref.section_id,
        task_id=ref.task_id,
        text=message_text,
        sender_id=caller.id,
        sender_name=caller.name,
        sender_is_admin=caller.is_admin,
        trace_id=g.get("trace_id"),
    )
    return _flow_response(change, caller, status=201)


def _handle_mark_messages_read(flow_id: str, section_id: str, task_id: str):
    caller = _current_caller()
    ref = parse_task_ref(flow_id, section_id, task_id)
    _require_flow_access(caller, get_flow(ref.flow_id))

    change = mark_task_messages_read(ref.flow_id, ref.section_id, ref.task_id, reader_id=caller.id)
    mark_notifications_read(
        caller.id,
        flow_id=ref.flow_id,
        section_id=ref.section_id,
        task_id=ref.task_id,
        type=TYPE_MESSAGE,
    )
    return _flow_response(change, caller)


def _handle_notifications():
    caller = _current_caller()
    settings = get_settings()
    dismissals = DismissalState(caller.id, PreferenceStore(caller.id))

    with session_scope() as session:
        flows = list_flows_for_feed(session, user_id=caller.id, include_all=caller.is_admin)

    feed = build_feed(
        flows,
        caller.id,
        today=datetime.now(UTC).date(),
        warning_days=settings.deadline_warning_days,
        dismissed=dismissals.dismissed,
    )
    stored = list_notifications(caller.id, unread_only=request.args.get("unread") == "1")
    return jsonify(
        {
            "feed": [_serialize_notification(item) for item in feed],
            "notifications": [_serialize_notification(item) for item in stored],
        }
    )


def _handle_dismiss_notification():
    caller = _current_caller()
    message_id = parse_text_payload(_payload(), field="message_id")

    dismissals = DismissalState(caller.id, PreferenceStore(caller.id))
    newly_dismissed = dismissals.dismiss(message_id)
    structlog.get_logger().info("message_dismissed", message_id=message_id, new=newly_dismissed)
    return jsonify({"dismissed": sorted(dismissals.dismissed)})


def _handle_mark_notifications_read():
    caller = _current_caller()
    payload = request.get_json(silent=True) or {}
    if not isinstance(payload, dict):
        raise ValueError("Request body must be a JSON object.")
    updated = mark_notifications_read(
        caller.id,
        flow_id=payload.get("flow_id"),
        section_id=payload.get("section_id"),
        task_id=payload.get("task_id"),
        type=payload.get("type"),
    )
    return jsonify({"updated": updated})


def _handle_list_users():
    caller = _current_caller()
    _require_admin(caller)
    users = list_users(role=request.args.get("role"))
    return jsonify({"users": [asdict(user) for user in users]})


def _handle_create_user():
    caller = _current_caller()
    _require_admin(caller)
    user = create_user(UserCreate.model_validate(_payload()))
    response = jsonify({"user": asdict(user)})
    response.status_code = 201
    return response


def _handle_update_user(user_id: str):
    caller = _current_caller()
    _require_admin(caller)
    user = update_user(user_id, UserUpdate.model_validate(_payload()))
    return jsonify({"user": asdict(user)})


def _handle_delete_user(user_id: str):
    caller = _current_caller()
    _require_admin(caller)
    if user_id == caller.id:
        raise ValueError("Administrators cannot delete their own account.")
    delete_user(user_id)
    return "", 204


def _register_flow_routes(flask_app: Flask) -> None:
    task_path = "/api/flows/<flow_id>/sections/<section_id>/tasks/<task_id>"

    flask_app.add_url_rule("/api/flows", "list_flows", _handle_list_flows, methods=["GET"])
    flask_app.add_url_rule("/api/flows", "create_flow", _handle_create_flow, methods=["POST"])
    flask_app.add_url_rule("/api/flows/<flow_id>", "get_flow", _handle_get_flow, methods=["GET"])
    flask_app.add_url_rule("/api/flows/<flow_id>", "update_flow", _handle_update_flow, methods=["PATCH"])
    flask_app.add_url_rule("/api/flows/<flow_id>", "delete_flow", _handle_delete_flow, methods=["DELETE"])
    flask_app.add_url_rule(
        "/api/flows/<flow_id>/sections/<section_id>",
        "delete_section",
        _handle_delete_section,
        methods=["DELETE"],
    )
    flask_app.add_url_rule(task_path, "delete_task", _handle_delete_task, methods=["DELETE"])
    flask_app.add_url_rule(
        f"{task_path}/completion", "task_completion", _handle_task_completion, methods=["POST"]
    )
    flask_app.add_url_rule(f"{task_path}/approval", "task_approval", _handle_task_approval, methods=["POST"])
    flask_app.add_url_rule(
        f"{task_path}/inputs/<input_id>", "task_input", _handle_task_input, methods=["PUT"]
    )
    flask_app.add_url_rule(f"{task_path}/messages", "send_message", _handle_send_message, methods=["POST"])
    flask_app.add_url_rule(
        f"{task_path}/messages/read", "mark_messages_read", _handle_mark_messages_read, methods=["POST"]
    )


def _register_notification_routes(flask_app: Flask) -> None:
    flask_app.add_url_rule("/api/notifications", "notifications", _handle_notifications, methods=["GET"])
    flask_app.add_url_rule(
        "/api/notifications/dismiss", "dismiss_notification", _handle_dismiss_notification, methods=["POST"]
    )
    flask_app.add_url_rule(
        "/api/notifications/read", "read_notifications", _handle_mark_notifications_read, methods=["POST"]
    )


def _register_user_routes(flask_app: Flask) -> None:
    flask_app.add_url_rule("/api/users", "list_users", _handle_list_users, methods=["GET"])
    flask_app.add_url_rule("/api/users", "create_user", _handle_create_user, methods=["POST"])
    flask_app.add_url_rule("/api/users/<user_id>", "update_user", _handle_update_user, methods=["PATCH"])
    flask_app.add_url_rule("/api/users/<user_id>", "delete_user", _handle_delete_user, methods=["DELETE"])


_LOGGING_CONFIGURED = False


def _load_version() -> str:
    version_file = Path(__file__).resolve().parent / "VERSION"
    if version_file.exists():
        return version_file.read_text(encoding="utf-8").strip()
    return "unknown"


def create_app() -> Flask:
    """Create and configure the Flask application."""

    global _LOGGING_CONFIGURED
    if not _LOGGING_CONFIGURED:
        configure_logging()
        _LOGGING_CONFIGURED = True

    get_settings()

    flask_app = Flask(__name__)
    flask_app.config["APP_VERSION"] = _load_version()
    flask_app.logger.setLevel("INFO")

    _register_error_handlers(flask_app)
    _register_request_hooks(flask_app)
    _register_flow_routes(flask_app)
    _register_notification_routes(flask_app)
    _register_user_routes(flask_app)

    @flask_app.route("/healthz", methods=["GET"])
    def healthz():
        health: dict[str, object] = {"ok": True}
        health["version"] = flask_app.config.get("APP_VERSION", "unknown")

        try:
            get_settings()
            health["config"] = "valid"
        except RuntimeError as exc:
            health["config"] = "invalid"
            health["config_error"] = str(exc)
            health["ok"] = False

        try:
            with session_scope() as session:
                session.execute(text("SELECT 1"))
            health["db"] = "up"
        except Exception as exc:
            health["db"] = "down"
            health["db_error"] = str(exc)
            health["ok"] = False

        status = 200 if health["ok"] else 503
        return jsonify(health), status

    return flask_app


if __name__ == "__main__":  # pragma: no cover - manual execution helper
    application = create_app()
    application.run(host="0.0.0.0", port=3000, debug=True)
