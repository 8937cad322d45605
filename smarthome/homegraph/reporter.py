"""State reporting to Google HomeGraph.

The reporter is the boundary to the upstream service. It only decides
when a report is sent and what it contains; the transport is the
googleapiclient HomeGraph service. Reports are fire-and-forget: every
failure is logged and swallowed, and no retry is attempted.
"""
import logging
import secrets
from collections.abc import Callable

from googleapiclient.errors import HttpError

from smarthome.core.errors import ReportingFailure
from smarthome.homegraph.client import get_homegraph_service, has_service_account

logger = logging.getLogger(__name__)

AGENT_USER_ID = "0"


def _request_id() -> str:
    return secrets.token_hex(16)


class StateReporter:
    """Send state reports, notifications and sync requests upstream."""

    def __init__(
        self,
        authority,
        registry,
        service_account_file: str | None = None,
        service_factory: Callable | None = None,
        agent_user_id: str = AGENT_USER_ID,
    ):
        self.authority = authority
        self.registry = registry
        self.service_account_file = service_account_file
        self.service_factory = service_factory or get_homegraph_service
        self.agent_user_id = agent_user_id

    def _can_report(self, action: str) -> bool:
        if not self.authority.is_user_logged_in():
            logger.error(f"{action}: no user logged in")
            return False
        if not has_service_account(self.service_account_file):
            logger.debug(f"{action}: no service account configured, skipping")
            return False
        return True

    def _send(self, action: str, body: dict) -> None:
        try:
            service = self.service_factory(self.service_account_file)
            devices = service.devices()
            if action == "reportState":
                devices.reportStateAndNotification(body=body).execute()
            else:
                devices.requestSync(body=body).execute()
        except HttpError as e:
            raise ReportingFailure(
                f"{action} rejected with HTTP {e.resp.status}: {e}"
            ) from e
        except Exception as e:
            raise ReportingFailure(f"{action} failed: {e}") from e

    def build_report(self, device_id: str | None, states: dict | None = None,
                     notifications: dict | None = None) -> dict:
        """
        Build a reportStateAndNotification request body.

        With device_id=None, ``states`` is taken to be a map of device id to
        states for several devices and sent unchanged.
        """
        body = {
            "requestId": _request_id(),
            "agentUserId": self.agent_user_id,
            "payload": {"devices": {}},
        }
        devices = body["payload"]["devices"]

        if notifications:
            body["eventId"] = _request_id()
            devices["notifications"] = {device_id: notifications}

        if states:
            if device_id is None:
                devices["states"] = states
            else:
                states = {k: v for k, v in states.items() if k != "command"}
                devices["states"] = {device_id: states}

        return body

    def report_state(self, device_id: str | None, states: dict | None = None,
                     notifications: dict | None = None) -> bool:
        """Report states and/or notifications. Returns True if sent."""
        if not self._can_report("reportState"):
            return False

        body = self.build_report(device_id, states, notifications)
        logger.debug(f"reportState: {body}")
        try:
            self._send("reportState", body)
        except ReportingFailure as e:
            logger.error(f"State report for {device_id} failed: {e}")
            return False

        logger.debug(f"reportState for {device_id} succeeded")
        return True

    def report_device_state(self, device_id: str) -> bool:
        """Report the current registry state of one device.

        Runs as a background job after an EXECUTE response has been sent.
        """
        try:
            states = self.registry.get_states([device_id])
        except Exception as e:
            logger.error(f"Could not read states of {device_id} for reporting: {e}")
            return False
        if not states or device_id not in states:
            logger.warning(f"No states to report for {device_id}")
            return False
        return self.report_state(device_id, states[device_id])

    def request_sync(self) -> bool:
        """Ask HomeGraph to re-run SYNC for the linked account."""
        if not self._can_report("requestSync"):
            return False

        body = {"agentUserId": self.agent_user_id, "async": True}
        try:
            self._send("requestSync", body)
        except ReportingFailure as e:
            logger.error(f"Sync request failed: {e}")
            return False

        logger.info("Requested sync")
        return True
