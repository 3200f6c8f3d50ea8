"""Log Context Management.

Task-safe logging context using contextvars for binding dispatch IDs,
user IDs, job names and topics to every log entry emitted while a
notification is being delivered.
"""

import uuid
from contextvars import ContextVar, Token
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any


_dispatch_id_var: ContextVar[str] = ContextVar("dispatch_id", default="")
_user_id_var: ContextVar[str] = ContextVar("user_id", default="")
_job_var: ContextVar[str] = ContextVar("job", default="")
_topic_var: ContextVar[str] = ContextVar("topic", default="")
_extra_context_var: ContextVar[dict] = ContextVar("extra_context", default={})


def generate_dispatch_id() -> str:
    """Generate a short unique dispatch ID."""
    return uuid.uuid4().hex[:16]


def get_dispatch_id() -> str:
    return _dispatch_id_var.get()


def get_user_id() -> str:
    return _user_id_var.get()


def get_job() -> str:
    return _job_var.get()


def get_context_dict() -> dict[str, Any]:
    """Get all bound context values as a dictionary for log binding."""
    ctx = {}
    for key, var in (
        ("dispatch_id", _dispatch_id_var),
        ("user_id", _user_id_var),
        ("job", _job_var),
        ("topic", _topic_var),
    ):
        value = var.get()
        if value:
            ctx[key] = value
    extra = _extra_context_var.get()
    if extra:
        ctx.update(extra)
    return ctx


@dataclass
class LogContext:
    """Context manager binding delivery metadata to log entries.

    Values left empty inherit from an enclosing context, so a job firing
    can bind ``job`` and the sends it triggers add ``user_id``.

    Example:
        with LogContext(job="daily-tips", topic="health_tips"):
            logger.info("firing")  # includes job and topic
    """

    dispatch_id: str = ""
    user_id: str = ""
    job: str = ""
    topic: str = ""
    extra: dict[str, Any] = field(default_factory=dict)
    started_at: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    _tokens: list[tuple[ContextVar, Token]] = field(default_factory=list, repr=False)

    def __post_init__(self):
        if not self.dispatch_id:
            self.dispatch_id = _dispatch_id_var.get() or generate_dispatch_id()

    def __enter__(self) -> "LogContext":
        bindings = [
            (_dispatch_id_var, self.dispatch_id),
            (_user_id_var, self.user_id or _user_id_var.get()),
            (_job_var, self.job or _job_var.get()),
            (_topic_var, self.topic or _topic_var.get()),
            (_extra_context_var, {**_extra_context_var.get(), **self.extra}),
        ]
        self._tokens = [(var, var.set(value)) for var, value in bindings]
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        for var, token in reversed(self._tokens):
            var.reset(token)
        self._tokens.clear()

    @property
    def elapsed_ms(self) -> float:
        """Milliseconds since context was created."""
        delta = datetime.now(timezone.utc) - self.started_at
        return delta.total_seconds() * 1000

    def bind(self, **kwargs: Any) -> None:
        """Add extra key-value pairs to the active context."""
        current = _extra_context_var.get()
        _extra_context_var.set({**current, **kwargs})
        self.extra.update(kwargs)
