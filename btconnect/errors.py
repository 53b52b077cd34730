"""Error kinds raised by the connection manager.

Everything derives from BtConnectError so the command-line entry point
can report any of them uniformly and exit non-zero.
"""

from typing import Optional


class BtConnectError(Exception):
	"""Base class for all unrecovered connection manager failures."""


class ConfigError(BtConnectError):
	pass


# ------------------------------
# RADIO KILL-SWITCH ERRORS
# ------------------------------
class NoRadiosFoundError(BtConnectError):
	def __init__(self, filter_label: Optional[str] = None) -> None:
		self.filter_label = filter_label
		if filter_label:
			message = f"No radio found with label {filter_label!r}"
		else:
			message = "No radios found"
		super().__init__(message)


class MixedRadioStateError(BtConnectError):
	"""Some radios are blocked and some are not; the intent is ambiguous."""

	def __init__(self, radios) -> None:
		self.radios = list(radios)
		states = ", ".join(f"{r.label}={'blocked' if r.blocked else 'unblocked'}" for r in self.radios)
		super().__init__(f"Radios are in a mixed state ({states}); specify the master radio label")


class RadioCommandError(BtConnectError):
	pass


class RadioToggleError(BtConnectError):
	def __init__(self, radio, verb: str, returncode: int) -> None:
		self.radio = radio
		self.verb = verb
		self.returncode = returncode
		super().__init__(f"Failed to {verb} radio {radio.id} ({radio.label}): exit status {returncode}")


# ------------------------------
# CONTROL SESSION ERRORS
# ------------------------------
class PatternTimeoutError(BtConnectError):
	"""The control daemon did not produce the expected output in time.

	The output gathered while waiting is kept in ``buffer`` for diagnosis.
	"""

	def __init__(self, pattern: str, timeout: float, buffer: str, message: Optional[str] = None) -> None:
		self.pattern = pattern
		self.timeout = timeout
		self.buffer = buffer
		super().__init__(message or f"Timed out after {timeout}s waiting for /{pattern}/")


class SessionStartupTimeoutError(PatternTimeoutError):
	def __init__(self, pattern: str, timeout: float, buffer: str) -> None:
		super().__init__(pattern, timeout, buffer, f"Control session did not start within {timeout}s (waiting for /{pattern}/)")


class DeviceUnavailableError(BtConnectError):
	def __init__(self, device_id: str, buffer: str = "") -> None:
		self.device_id = device_id
		self.buffer = buffer
		super().__init__(f"Device {device_id} not available")


class ProfileSwitchError(BtConnectError):
	def __init__(self, card: str, profile: str, returncode: int, output: str = "") -> None:
		self.card = card
		self.profile = profile
		self.returncode = returncode
		self.output = output
		super().__init__(f"Switching {card} to profile {profile!r} failed with exit status {returncode}")
