"""Temporal orchestration for the periodic audit maintenance jobs."""

# Workflow modules must not import SQLAlchemy models at module level; the
# activities they call are passed through the sandbox explicitly.
