"""Schema package exports."""

from .device_tokens import DeviceTokenRow
from .notification_jobs import JOB_STATUS_DEAD, JOB_STATUS_LEASED, JOB_STATUS_QUEUED, NotificationJobRow

__all__ = ["DeviceTokenRow", "NotificationJobRow", "JOB_STATUS_QUEUED", "JOB_STATUS_LEASED", "JOB_STATUS_DEAD"]
