"""Base class for devices exposed to the voice assistant."""
import logging

from smarthome.core.errors import FUNCTION_NOT_SUPPORTED

logger = logging.getLogger(__name__)

TYPE_PREFIX = "action.devices.types."
TRAIT_PREFIX = "action.devices.traits."
COMMAND_PREFIX = "action.devices.commands."


class Device:
    """A controllable device.

    Subclasses declare their traits and register command handlers in
    ``command_handlers``. A handler receives the command ``params`` and
    returns a result dict understood by the EXECUTE intent:

        {}                              success, report state
        {"reportState": False}          success, do not report state
        {"params": {...}}               the params actually applied
        {"states": {...}}               states to return instead of self.states
        {"executionStates": [...]}      state keys to include in the response
        {"status": "ERROR", ...}        returned to the caller unchanged

    Attributes:
        id: Unique device id, also the key used in SYNC/QUERY/EXECUTE.
        name: Display name.
        device_type: Short device type, e.g. "SWITCH" or "HOOD".
        room_hint: Optional room name suggested to the assistant.
        reachable_locally: Whether REACHABLE_DEVICES lists this device.
        states: Current state, always containing "online".
    """
    device_type = "SWITCH"
    traits: tuple[str, ...] = ()
    default_states: dict = {}

    def __init__(
        self,
        device_id: str,
        name: str,
        device_type: str | None = None,
        room_hint: str | None = None,
        states: dict | None = None,
        reachable_locally: bool = True,
    ):
        self.id = device_id
        self.name = name
        if device_type:
            self.device_type = device_type.upper()
        self.room_hint = room_hint
        self.reachable_locally = reachable_locally
        self.states = {"online": True, **self.default_states, **(states or {})}
        self.command_handlers = {}

    @property
    def properties(self) -> dict:
        """SYNC record for this device."""
        props = {
            "type": TYPE_PREFIX + self.device_type,
            "traits": [TRAIT_PREFIX + t for t in self.traits],
            "name": {"defaultNames": [self.name], "name": self.name, "nicknames": [self.name]},
            "willReportState": True,
            "attributes": self.attributes(),
            "deviceInfo": {
                "manufacturer": "Smart Home Bridge",
                "model": self.device_type.lower(),
                "swVersion": "1.0",
                "hwVersion": "1.0",
            },
            "customData": {},
        }
        if self.room_hint:
            props["roomHint"] = self.room_hint
        return props

    def attributes(self) -> dict:
        return {}

    @property
    def online(self) -> bool:
        return bool(self.states.get("online"))

    def execute_command(self, command: dict) -> dict:
        name = command.get("command", "")
        handler = self.command_handlers.get(name)
        if handler is None:
            logger.warning(f"Device {self.id} does not support command {name}")
            return {"status": "ERROR", "errorCode": FUNCTION_NOT_SUPPORTED}
        return handler(command.get("params", {}))

    def updated(self, command: dict, result: dict, is_local: bool) -> None:
        """Called after a command was applied successfully."""
        source = "local" if is_local else "cloud"
        logger.info(f"Device {self.id} executed {command.get('command')} ({source})")
