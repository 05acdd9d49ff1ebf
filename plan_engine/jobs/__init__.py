"""
Jobs Package

Scheduled batch jobs and their monitoring.
"""

from .monitor import JobMonitor
from .overdue import JOB_NAME, OverdueStatusJob

__all__ = ["JOB_NAME", "JobMonitor", "OverdueStatusJob"]
