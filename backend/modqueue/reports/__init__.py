"""Report engine integration helpers exposed to the application."""

from modqueue.reports.domain.container import (
    configure,
    configure_from_settings,
    configure_postgres,
    get_report_service,
)
from modqueue.reports.workers.runner import spawn_workers

__all__ = ["configure", "configure_from_settings", "configure_postgres", "get_report_service", "spawn_workers"]
