"""
CableCtrl - Cable Resistance Trainer Control Library

A Python library for controlling a BLE cable resistance trainer: command
frames, telemetry decoding, rep detection and a safety auto-stop.
"""

__version__ = "0.1.0"
__description__ = "CLI and library for controlling a BLE cable resistance trainer"

from .controller import SessionController, StopOutcome
from .display import DisplayManager
from .transport import GattTransport

__all__ = ["SessionController", "StopOutcome", "DisplayManager", "GattTransport"]
