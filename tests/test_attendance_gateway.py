"""
Attendance gateway tests — HTTP client against a mocked requests.Session.
"""

from datetime import date
from unittest.mock import MagicMock

import pytest
import requests

from millflow.integrations.attendance_gateway import (
    AttendanceUnavailableError,
    HttpAttendanceGateway,
    NullAttendanceGateway,
    attendance_from_config,
)

DAY = date(2026, 10, 19)


def _gateway(response=None, error=None):
    session = MagicMock()
    if error is not None:
        session.get.side_effect = error
    else:
        session.get.return_value = response
    return HttpAttendanceGateway("https://attendance.local/api/", timeout=2, session=session), session


def _response(body):
    resp = MagicMock()
    resp.raise_for_status.return_value = None
    resp.json.return_value = body
    return resp


def test_available_worker():
    gateway, session = _gateway(_response({"available": True, "reason": "checked in 07:55"}))

    assert gateway.is_worker_available(12, DAY) == (True, "checked in 07:55")
    session.get.assert_called_once_with(
        "https://attendance.local/api/workers/12/availability",
        params={"date": "2026-10-19"},
        timeout=2,
    )


def test_absent_worker_without_reason():
    gateway, _ = _gateway(_response({"available": False}))
    assert gateway.is_worker_available(12, DAY) == (False, "absent")


def test_network_error_is_wrapped():
    gateway, _ = _gateway(error=requests.ConnectionError("refused"))
    with pytest.raises(AttendanceUnavailableError):
        gateway.is_worker_available(12, DAY)


def test_http_error_is_wrapped():
    resp = _response({})
    resp.raise_for_status.side_effect = requests.HTTPError("503")
    gateway, _ = _gateway(resp)
    with pytest.raises(AttendanceUnavailableError):
        gateway.is_worker_available(12, DAY)


def test_invalid_json_is_wrapped():
    resp = _response(None)
    resp.json.side_effect = ValueError("not json")
    gateway, _ = _gateway(resp)
    with pytest.raises(AttendanceUnavailableError):
        gateway.is_worker_available(12, DAY)


def test_null_gateway_never_blocks():
    assert NullAttendanceGateway().is_worker_available(1, DAY) == (True, "not recorded")


def test_gateway_from_config(app):
    assert isinstance(attendance_from_config(), NullAttendanceGateway)
    app.config["ATTENDANCE_SERVICE_URL"] = "https://attendance.local"
    try:
        gateway = attendance_from_config()
    finally:
        app.config["ATTENDANCE_SERVICE_URL"] = None
    assert isinstance(gateway, HttpAttendanceGateway)
    assert gateway.timeout == app.config["ATTENDANCE_TIMEOUT_SECONDS"]
