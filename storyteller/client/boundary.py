"""
Last-resort fault handling for the story client's render path.

Anything a render callable raises is logged and replaced with a FaultView
that offers a full reload. Expected failures never reach here; they end in
the controller's FAILED state or in a user notice.
"""

import traceback
from dataclasses import dataclass
from typing import Any, Callable, Optional

from storyteller.core.logging import get_logger

logger = get_logger(__name__)

FAULT_MESSAGE = "Something went wrong in the application."
RELOAD_ACTION = "Reload Application"


@dataclass(frozen=True)
class FaultView:
    """What the user sees instead of the broken view."""

    message: str
    details: str
    reload_action: str = RELOAD_ACTION


class ErrorBoundary:
    """
    Wraps a render callable.

    Once a fault is caught the boundary keeps returning the same FaultView
    until ``reset()`` (the reload action) is called.
    """

    def __init__(self, on_reload: Optional[Callable[[], None]] = None):
        self._on_reload = on_reload
        self.fault: Optional[FaultView] = None

    @property
    def has_fault(self) -> bool:
        return self.fault is not None

    def render(self, fn: Callable[..., Any], *args, **kwargs) -> Any:
        if self.fault is not None:
            return self.fault

        try:
            return fn(*args, **kwargs)
        except Exception as exc:
            logger.error(
                "render_failed",
                error=str(exc),
                error_type=type(exc).__name__,
                exc_info=True,
            )
            self.fault = FaultView(
                message=FAULT_MESSAGE,
                details="".join(traceback.format_exception_only(type(exc), exc)).strip(),
            )
            return self.fault

    def reset(self) -> None:
        """Clear the fault and ask the host to reload."""
        self.fault = None
        if self._on_reload is not None:
            self._on_reload()
