"""
Attendance collaborator — answers "is this worker available on this day?".

The production start gate asks once per assigned worker (primary and
helpers). Two implementations:

  NullAttendanceGateway   every worker is available (no attendance source
                          configured); reason is "not recorded"
  HttpAttendanceGateway   GET {base_url}/workers/{id}/availability?date=...
                          through a requests.Session with a timeout

Testability: pass a mock `session` to HttpAttendanceGateway in tests
instead of letting it create a real requests.Session.
"""

from __future__ import annotations

import abc
import logging
from datetime import date

import requests
from flask import current_app, has_app_context

logger = logging.getLogger(__name__)

_DEFAULT_TIMEOUT = 5


class AttendanceUnavailableError(Exception):
    """The attendance source could not be reached or answered garbage."""


class AttendanceGateway(abc.ABC):
    @abc.abstractmethod
    def is_worker_available(self, worker_id: int, day: date) -> tuple[bool, str]:
        """Return (available, reason). reason is user-facing."""


class NullAttendanceGateway(AttendanceGateway):
    """No attendance data: nobody is ever blocked."""

    def is_worker_available(self, worker_id, day):
        return True, "not recorded"


class HttpAttendanceGateway(AttendanceGateway):
    """Attendance service client.

    Expected response body: {"available": bool, "reason": str}.
    Network errors and non-2xx answers raise AttendanceUnavailableError;
    the start gate treats that as a failed precondition.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = _DEFAULT_TIMEOUT,
        session: requests.Session | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._session = session

    @property
    def session(self) -> requests.Session:
        """Return (or lazily create) the requests.Session."""
        if self._session is None:
            self._session = requests.Session()
        return self._session

    def is_worker_available(self, worker_id, day):
        url = f"{self.base_url}/workers/{worker_id}/availability"
        try:
            resp = self.session.get(url, params={"date": day.isoformat()}, timeout=self.timeout)
            resp.raise_for_status()
            body = resp.json()
        except requests.RequestException as exc:
            logger.warning("Attendance lookup failed for worker=%s: %s", worker_id, exc)
            raise AttendanceUnavailableError(
                f"Attendance service unreachable for worker {worker_id}"
            ) from exc
        except ValueError as exc:
            raise AttendanceUnavailableError("Attendance service returned invalid JSON") from exc

        available = bool(body.get("available", False))
        reason = body.get("reason") or ("available" if available else "absent")
        return available, reason


def attendance_from_config() -> AttendanceGateway:
    """Build the gateway named by ATTENDANCE_SERVICE_URL (null when unset)."""
    if not has_app_context():
        return NullAttendanceGateway()
    url = current_app.config.get("ATTENDANCE_SERVICE_URL")
    if not url:
        return NullAttendanceGateway()
    timeout = current_app.config.get("ATTENDANCE_TIMEOUT_SECONDS", _DEFAULT_TIMEOUT)
    return HttpAttendanceGateway(url, timeout=timeout)
