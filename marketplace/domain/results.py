# marketplace/domain/results.py
import functools
from dataclasses import dataclass
from typing import Any

from marketplace.utils.errors import MarketplaceError
from marketplace.utils.logging import get_logger

logger = get_logger(__name__)

# never written to the logs: gateway signatures and buyer-supplied personalization
SENSITIVE_ARGS = frozenset({"signature", "details", "personalization", "payload"})


@dataclass(frozen=True)
class ActionResult:
    """Tagged success/failure returned by every mutating operation."""

    ok: bool
    data: Any = None
    code: str | None = None
    kind: str | None = None
    message: str | None = None
    next_action: str | None = None

    @classmethod
    def success(cls, data: Any = None) -> "ActionResult":
        return cls(ok=True, data=data)

    @classmethod
    def failure(cls, error: MarketplaceError) -> "ActionResult":
        return cls(
            ok=False,
            data=error.context or None,
            code=error.code,
            kind=error.kind,
            message=error.message,
            next_action=error.next_action,
        )


def loggable(kwargs: dict) -> dict:
    return {k: ("***" if k in SENSITIVE_ARGS else v) for k, v in kwargs.items()}


def action(name: str):
    """
    Wraps a service method so that it returns an ActionResult.
    Known errors become failures, anything else is logged with its traceback
    and surfaced as a generic retryable failure.
    """

    def wrap(fn):
        @functools.wraps(fn)
        def inner(*args, **kwargs):
            try:
                return ActionResult.success(fn(*args, **kwargs))
            except MarketplaceError as e:
                logger.warning(f"{name} rejected: {e.code} {e.message} context={e.context} args={loggable(kwargs)}")
                return ActionResult.failure(e)
            except Exception:
                logger.exception(f"{name} failed unexpectedly args={loggable(kwargs)}")
                return ActionResult.failure(MarketplaceError())

        return inner

    return wrap
