"""Routing of host runtime events onto workflow recording operations."""

from __future__ import annotations

import logging
from enum import Enum

logger = logging.getLogger(__name__)


class EventKind(str, Enum):
    TASK = "task"
    REASONING = "reasoning"
    GENERATE_EXPLANATION = "generate_explanation"
    TASK_PROGRESS = "task_progress"
    ERROR = "error"
    IGNORE_FILE_ERROR = "clineignore_error"
    COMMAND = "command"
    COMMAND_OUTPUT = "command_output"
    TOOL = "tool"
    CHECKPOINT_CREATED = "checkpoint_created"
    USER_FEEDBACK_DIFF = "user_feedback_diff"
    HOOK_OUTPUT = "hook_output"
    API_REQ_STARTED = "api_req_started"
    API_REQ_FINISHED = "api_req_finished"
    COMPLETION_RESULT = "completion_result"


class EventRoute(str, Enum):
    INTENT = "intent"
    PLAN = "plan"
    OPEN_QUESTION = "open_question"
    IMPLEMENTATION = "implementation"


EVENT_ROUTES: dict[EventKind, EventRoute] = {
    EventKind.TASK: EventRoute.INTENT,
    EventKind.REASONING: EventRoute.PLAN,
    EventKind.GENERATE_EXPLANATION: EventRoute.PLAN,
    EventKind.TASK_PROGRESS: EventRoute.PLAN,
    EventKind.ERROR: EventRoute.OPEN_QUESTION,
    EventKind.IGNORE_FILE_ERROR: EventRoute.OPEN_QUESTION,
    EventKind.COMMAND: EventRoute.IMPLEMENTATION,
    EventKind.COMMAND_OUTPUT: EventRoute.IMPLEMENTATION,
    EventKind.TOOL: EventRoute.IMPLEMENTATION,
    EventKind.CHECKPOINT_CREATED: EventRoute.IMPLEMENTATION,
    EventKind.USER_FEEDBACK_DIFF: EventRoute.IMPLEMENTATION,
    EventKind.HOOK_OUTPUT: EventRoute.IMPLEMENTATION,
    EventKind.API_REQ_STARTED: EventRoute.IMPLEMENTATION,
    EventKind.API_REQ_FINISHED: EventRoute.IMPLEMENTATION,
    EventKind.COMPLETION_RESULT: EventRoute.IMPLEMENTATION,
}

_unrouted = set(EventKind) - set(EVENT_ROUTES)
if _unrouted:
    raise RuntimeError(f"Event kinds without a route: {sorted(kind.value for kind in _unrouted)}")


def resolve_route(kind: str) -> tuple[EventKind, EventRoute] | None:
    """Map a raw event kind onto its route; unrecognized kinds are logged and dropped."""
    try:
        event_kind = EventKind(kind)
    except ValueError:
        logger.warning("Dropping host event with unrecognized kind %r", kind)
        return None
    return event_kind, EVENT_ROUTES[event_kind]
