"""Devices controlled with the OnOff trait."""
from smarthome.devices.base import COMMAND_PREFIX, Device


class OnOffDevice(Device):
    """A device that can only be switched on and off.

    Used for switches, outlets, lights without dimming, fans and hoods.
    """
    device_type = "SWITCH"
    traits = ("OnOff",)
    default_states = {"on": False}

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.command_handlers[COMMAND_PREFIX + "OnOff"] = self._on_off

    def _on_off(self, params: dict) -> dict:
        if "on" not in params:
            return {"status": "ERROR", "errorCode": "protocolError"}
        self.states["on"] = bool(params["on"])
        return {}


class HoodDevice(OnOffDevice):
    """Kitchen hood, on/off only."""
    device_type = "HOOD"
