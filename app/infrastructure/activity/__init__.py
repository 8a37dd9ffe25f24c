"""
System activity logging for operator-visible pipeline events.
"""

from app.infrastructure.activity.activity_logger import ActivityLogger, ActivityStatus

__all__ = ["ActivityLogger", "ActivityStatus"]
