"""Smart home intent dispatcher.

Handles one POST to the smarthome endpoint:

    1. Extract the bearer token from the Authorization header.
    2. Resolve the token to a user through the Authority. Local execution
       tokens are checked (and rotated) first.
    3. Local execution tokens are only honoured from loopback or private
       addresses; other callers get an empty 200 and nothing is executed.
    4. Route every entry of ``inputs`` by its intent.

The dispatcher holds no state between requests. It never raises for
protocol errors; ``dispatch`` always returns a DispatchResult carrying the
HTTP status, the JSON body and the ids of devices whose state must be
reported once the response has been sent.
"""
import ipaddress
import logging
from dataclasses import dataclass, field

from smarthome.auth.authority import Authority
from smarthome.core.errors import (
    DEVICE_OFFLINE,
    PROTOCOL_ERROR,
    BridgeError,
    MalformedRequest,
    RegistryFailure,
    Unauthenticated,
)
from smarthome.homegraph.reporter import AGENT_USER_ID

logger = logging.getLogger(__name__)

SYNC = "action.devices.SYNC"
QUERY = "action.devices.QUERY"
EXECUTE = "action.devices.EXECUTE"
DISCONNECT = "action.devices.DISCONNECT"
IDENTIFY = "action.devices.IDENTIFY"
REACHABLE_DEVICES = "action.devices.REACHABLE_DEVICES"

LOCAL_NETWORKS = tuple(
    ipaddress.ip_network(n)
    for n in (
        # loopback
        "127.0.0.0/8",
        "::1/128",
        # private
        "fd00::/8",
        "10.0.0.0/8",
        "172.16.0.0/12",
        "192.168.0.0/16",
    )
)

PLACEHOLDER_DEVICE = {
    "id": "dummy.node",
    "type": "action.devices.types.SCENE",
    "traits": ["action.devices.traits.Scene"],
    "name": {"defaultNames": ["Smart Home Bridge Scene"], "name": "Dummy"},
    "willReportState": True,
    "attributes": {"sceneReversible": False},
    "deviceInfo": {
        "manufacturer": "Smart Home Bridge",
        "model": "bridge-scene-v1",
        "swVersion": "1.0",
        "hwVersion": "1.0",
    },
}


def is_local_address(host: str | None) -> bool:
    """Whether ``host`` is a loopback or private network address."""
    if not host:
        return False
    try:
        ip = ipaddress.ip_address(host)
    except ValueError:
        return False
    if ip.version == 6 and ip.ipv4_mapped is not None:
        ip = ip.ipv4_mapped
    return any(ip in net for net in LOCAL_NETWORKS if net.version == ip.version)


def extract_bearer_token(authorization: str | None) -> str:
    """Return the token of an ``Authorization: Bearer <token>`` header.

    Raises:
        Unauthenticated: header missing or not of the form "Bearer <token>".
    """
    if not authorization:
        raise Unauthenticated("Missing authorization header")
    parts = authorization.split(" ")
    if len(parts) != 2 or parts[0] != "Bearer" or not parts[1]:
        raise Unauthenticated("Invalid authorization header")
    return parts[1]


def _items(value) -> list:
    """The list at ``value``, or an empty list for anything else."""
    return value if isinstance(value, list) else []


@dataclass
class DispatchResult:
    """Outcome of one smarthome request."""
    status_code: int
    body: dict | None
    reports: list[str] = field(default_factory=list)


@dataclass
class RequestContext:
    request_id: str | None
    user: str
    is_local: bool
    reports: list[str] = field(default_factory=list)


class IntentDispatcher:
    """Authenticate smarthome requests and route their intents."""

    def __init__(
        self,
        authority: Authority,
        registry,
        node_id: str,
        local_execution: bool = True,
        http_port: int | None = None,
        local_path_prefix: str = "",
    ):
        self.authority = authority
        self.registry = registry
        self.node_id = node_id
        self.local_execution = local_execution
        self.http_port = http_port
        self.local_path_prefix = local_path_prefix
        self._handlers = {
            SYNC: self._sync,
            QUERY: self._query,
            EXECUTE: self._execute,
            DISCONNECT: self._disconnect,
            IDENTIFY: self._identify,
            REACHABLE_DEVICES: self._reachable_devices,
        }

    def dispatch(self, authorization: str | None, body, client_host: str | None) -> DispatchResult:
        try:
            return self._dispatch(authorization, body, client_host)
        except BridgeError as e:
            if e.status_code >= 500:
                logger.error(f"smarthome request failed: {e}")
            else:
                logger.error(f"smarthome request rejected: {e}")
            return DispatchResult(e.status_code, {"error": e.error})

    def _dispatch(self, authorization, body, client_host) -> DispatchResult:
        token = extract_bearer_token(authorization)

        user, is_local_execution = self.authority.authenticate(token)
        if user is None:
            raise Unauthenticated("No valid access token")

        if is_local_execution and not is_local_address(client_host):
            logger.warning(f"Local execution token presented from non-local address {client_host}")
            return DispatchResult(200, {})

        logger.debug(f"smarthome request from user {user}")

        inputs = body.get("inputs") if isinstance(body, dict) else None
        if not isinstance(inputs, list):
            raise MalformedRequest("Missing inputs")

        ctx = RequestContext(body.get("requestId"), user, is_local_execution)
        payload = {}
        handled = False
        problems = []

        for entry in inputs:
            intent = entry.get("intent") if isinstance(entry, dict) else None
            if not intent:
                logger.error("Input without intent")
                problems.append("missing intent")
                continue

            handler = self._handlers.get(intent)
            if handler is None:
                logger.error(f"Invalid intent {intent}")
                problems.append(f"invalid intent {intent}")
                continue

            entry_payload = entry.get("payload") or {}
            if not isinstance(entry_payload, dict):
                logger.error(f"Malformed payload for {intent}")
                problems.append(f"malformed payload for {intent}")
                continue

            logger.debug(f"Handling {intent}")
            payload.update(handler(entry_payload, ctx))
            handled = True

        if not handled:
            payload = {"errorCode": PROTOCOL_ERROR, "debugString": "; ".join(problems) or "no inputs"}

        return DispatchResult(200, {"requestId": ctx.request_id, "payload": payload}, ctx.reports)

    def _registry_call(self, name: str, *args):
        try:
            result = getattr(self.registry, name)(*args)
        except Exception as e:
            raise RegistryFailure(f"Device registry {name} failed: {e}") from e
        if result is None:
            raise RegistryFailure(f"Device registry {name} returned nothing")
        return result

    # Intents

    def _sync(self, payload: dict, ctx: RequestContext) -> dict:
        devices = self._registry_call("get_properties")

        device_list = []
        for device_id, props in devices.items():
            if not props:
                continue
            device = dict(props)
            device["id"] = device_id
            if self.local_execution:
                custom_data = dict(device.get("customData") or {})
                custom_data.update({
                    "localAuthToken": self.authority.local_auth_code,
                    "httpPort": self.http_port,
                    "httpPathPrefix": self.local_path_prefix,
                })
                device["customData"] = custom_data
                device["otherDeviceIds"] = [{"deviceId": device_id}]
            device_list.append(device)

        if not device_list:
            # Account linking fails for accounts without devices.
            device_list.append(dict(PLACEHOLDER_DEVICE))

        return {"agentUserId": AGENT_USER_ID, "devices": device_list}

    def _query(self, payload: dict, ctx: RequestContext) -> dict:
        device_ids = [
            d["id"] for d in _items(payload.get("devices"))
            if isinstance(d, dict) and isinstance(d.get("id"), str) and d["id"]
        ]
        states = self._registry_call("get_states", device_ids)
        return {"devices": states}

    def _execute(self, payload: dict, ctx: RequestContext) -> dict:
        commands = []
        for group in _items(payload.get("commands")):
            if not isinstance(group, dict):
                logger.error(f"Skipping malformed EXECUTE command {group!r}")
                continue
            device_ids = []
            for device in _items(group.get("devices")):
                if isinstance(device, dict) and isinstance(device.get("id"), str) and device["id"]:
                    device_ids.append(device["id"])
                else:
                    logger.error(f"Skipping malformed EXECUTE device {device!r}")
            for execution in _items(group.get("execution")):
                if not isinstance(execution, dict):
                    logger.error(f"Skipping malformed EXECUTE execution {execution!r}")
                    continue
                for device_id in device_ids:
                    entry, report = self._execute_device(execution, device_id, ctx.is_local)
                    logger.debug(f"EXECUTE {execution.get('command')} on {device_id}: {entry}")
                    commands.append(entry)
                    if report and device_id not in ctx.reports:
                        ctx.reports.append(device_id)
        return {"commands": commands}

    def _execute_device(self, command: dict, device_id: str, is_local: bool) -> tuple[dict, bool]:
        """Run one command on one device. Returns (response entry, report state)."""
        device = self.registry.get_device(device_id) if device_id else None
        if device is None or not device.online:
            logger.warning(f"Device {device_id} is offline or unknown")
            return {"ids": [device_id], "status": "ERROR", "errorCode": DEVICE_OFFLINE, "states": {}}, False

        command = dict(command)
        if not isinstance(command.get("params"), dict):
            command["params"] = {}
        try:
            result = device.execute_command(command) or {}
        except Exception as e:
            logger.error(f"Command {command.get('command')} failed on {device_id}: {e}")
            return {"ids": [device_id], "status": "ERROR", "errorCode": "hardError", "states": {}}, False

        if "status" in result:
            entry = {"ids": [device_id], "status": result["status"], "states": result.get("states", {})}
            for key in ("errorCode", "challengeNeeded"):
                if result.get(key):
                    entry[key] = result[key]
            return entry, False

        device.updated(command, result, is_local)

        params = command.get("params") or {}
        all_params = False
        if result.get("params"):
            params = result["params"]
            all_params = True

        states = dict(result["states"]) if result.get("states") else dict(device.states)
        for key, value in params.items():
            if all_params or key in device.states:
                states[key] = value

        execution_states = result.get("executionStates")
        if execution_states:
            states = {key: states[key] for key in execution_states if key in states}

        return {"ids": [device_id], "status": "SUCCESS", "states": states}, result.get("reportState", True)

    def _disconnect(self, payload: dict, ctx: RequestContext) -> dict:
        self.authority.revoke_all_for_user(ctx.user)
        return {}

    def _identify(self, payload: dict, ctx: RequestContext) -> dict:
        return {
            "device": {
                "id": self.node_id,
                "isLocalOnly": True,
                "isProxy": True,
                "deviceInfo": {
                    "manufacturer": "Smart Home Bridge",
                    "model": "smarthome-bridge",
                    "swVersion": "1.0",
                    "hwVersion": "1.0",
                },
            }
        }

    def _reachable_devices(self, payload: dict, ctx: RequestContext) -> dict:
        return {"devices": self._registry_call("get_reachable_devices")}
