"""
btconnect - Bluetooth audio device connection manager.

Drives an interactive bluetoothctl session to connect or disconnect a
paired audio device, temporarily enabling the host radio when it is
blocked and restoring it afterwards, including on interruption.
"""

__version__ = "1.0.0"
