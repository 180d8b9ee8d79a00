"""Clinic access control and audit service package."""

# Don't import create_app at module level: Temporal workflow modules import
# this package and must not pull FastAPI into the sandbox.


def __getattr__(name):
    """Lazy import to avoid loading FastAPI in Temporal workflows."""
    if name == "create_app":
        from .main import create_app
        return create_app
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
