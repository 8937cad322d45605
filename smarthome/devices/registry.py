"""In-process device registry consulted by the intent dispatcher."""
import json
import logging
from pathlib import Path

from smarthome.devices.base import Device
from smarthome.devices.onoff import HoodDevice, OnOffDevice

logger = logging.getLogger(__name__)

DEVICE_CLASSES: dict[str, type[Device]] = {
    "HOOD": HoodDevice,
    "SWITCH": OnOffDevice,
    "OUTLET": OnOffDevice,
    "LIGHT": OnOffDevice,
    "FAN": OnOffDevice,
}


class DeviceRegistry:
    """Devices known to the bridge, keyed by id."""

    def __init__(self, devices=()):
        self._devices: dict[str, Device] = {}
        for device in devices:
            self.add(device)

    def add(self, device: Device) -> None:
        if device.id in self._devices:
            logger.warning(f"Replacing device with duplicate id {device.id}")
        self._devices[device.id] = device

    def remove(self, device_id: str) -> Device | None:
        return self._devices.pop(device_id, None)

    def get_device(self, device_id: str) -> Device | None:
        return self._devices.get(device_id)

    def get_properties(self) -> dict[str, dict]:
        return {device_id: d.properties for device_id, d in self._devices.items()}

    def get_states(self, device_ids) -> dict[str, dict]:
        states = {}
        for device_id in device_ids:
            device = self._devices.get(device_id)
            if device is None:
                states[device_id] = {"online": False, "status": "ERROR", "errorCode": "deviceNotFound"}
            else:
                states[device_id] = dict(device.states)
        return states

    def get_reachable_devices(self) -> list[dict]:
        return [
            {"verificationId": device_id}
            for device_id, d in self._devices.items()
            if d.reachable_locally
        ]

    def load_file(self, path: str | Path) -> int:
        """
        Load device definitions from a JSON file.

        The file holds a list of objects such as:
            {"id": "hood-1", "type": "HOOD", "name": "Kitchen Hood",
             "room": "Kitchen", "states": {"on": false}}

        Returns:
            Number of devices added.
        """
        entries = json.loads(Path(path).read_text(encoding="utf-8"))
        if not isinstance(entries, list):
            raise ValueError(f"{path}: expected a list of devices")

        count = 0
        for entry in entries:
            device_type = entry.get("type", "SWITCH").upper()
            cls = DEVICE_CLASSES.get(device_type)
            if cls is None:
                logger.warning(f"Skipping device {entry.get('id')}: unsupported type {device_type}")
                continue
            self.add(cls(
                entry["id"],
                entry.get("name", entry["id"]),
                device_type=device_type,
                room_hint=entry.get("room"),
                states=entry.get("states"),
                reachable_locally=entry.get("reachable_locally", True),
            ))
            count += 1

        logger.info(f"Loaded {count} devices from {path}")
        return count
