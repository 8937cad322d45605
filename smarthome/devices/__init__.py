from smarthome.devices.base import Device
from smarthome.devices.onoff import HoodDevice, OnOffDevice
from smarthome.devices.registry import DeviceRegistry

__all__ = ["Device", "DeviceRegistry", "HoodDevice", "OnOffDevice"]
