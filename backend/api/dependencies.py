"""
Dependency injection for the API service.
Provides the freshness controller and the force-refresh limiter to route handlers.
"""
from __future__ import annotations

from scheduler.freshness import FreshnessController

from api.rate_limit import SlidingWindowLimiter

# Module-level singletons, initialized at startup
_controller: FreshnessController | None = None
_limiter: SlidingWindowLimiter | None = None


def init_dependencies(controller: FreshnessController, limiter: SlidingWindowLimiter) -> None:
    """Initialize module-level singletons. Called once at startup."""
    global _controller, _limiter
    _controller = controller
    _limiter = limiter


def reset_dependencies() -> None:
    global _controller, _limiter
    _controller = None
    _limiter = None


def get_controller() -> FreshnessController:
    """FastAPI dependency: returns the shared FreshnessController."""
    if _controller is None:
        raise RuntimeError("FreshnessController not initialized; call init_dependencies first")
    return _controller


def get_limiter() -> SlidingWindowLimiter:
    """FastAPI dependency: returns the force-refresh limiter."""
    if _limiter is None:
        raise RuntimeError("SlidingWindowLimiter not initialized; call init_dependencies first")
    return _limiter
