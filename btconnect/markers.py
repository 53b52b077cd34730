"""Classification of free-text control daemon output.

The daemon (bluetoothctl) has no structured protocol: events are lines
of text whose wording changes between versions. All the regular
expressions live here so a config file can swap any of them.
"""

import re
import enum
from dataclasses import dataclass
from typing import Dict, Optional, Sequence, Union

from .errors import ConfigError


class PollResult(enum.Enum):
	PENDING = "pending"
	SUCCESS = "success"
	RETRY = "retry"
	HARD_FAILURE = "hard_failure"


DEFAULT_PATTERNS: Dict[str, str] = {
	"agent_registered": r"Agent registered",
	"connect_success": r"Connection successful",
	"connect_failure": r"Failed to connect",
	"disconnect_success": r"Successful(ly)? disconnected",
	"disconnect_failure": r"Failed to disconnect",
	"not_connected": r"org\.bluez\.Error\.NotConnected|Device not connected",
	"device_unavailable": r"Device \S+ not available",
	"connected_status": r"Connected: (yes|no)",
}


@dataclass(frozen=True)
class Markers:
	agent_registered: re.Pattern
	connect_success: re.Pattern
	connect_failure: re.Pattern
	disconnect_success: re.Pattern
	disconnect_failure: re.Pattern
	not_connected: re.Pattern
	device_unavailable: re.Pattern
	connected_status: re.Pattern

	@classmethod
	def from_config(cls, overrides: Optional[Dict[str, str]] = None) -> "Markers":
		"""Build the marker set, replacing defaults with ``overrides`` (name -> regex)."""
		patterns = dict(DEFAULT_PATTERNS)
		for name, pattern in (overrides or {}).items():
			if name not in patterns:
				raise ConfigError(f"Unknown marker: {name}")
			patterns[name] = pattern

		compiled = {}
		for name, pattern in patterns.items():
			try:
				compiled[name] = re.compile(pattern)
			except re.error as e:
				raise ConfigError(f"Invalid regex for marker {name}: {e}") from e
		# is_connected reads the yes/no answer from group 1
		if compiled["connected_status"].groups < 1:
			raise ConfigError("Marker connected_status needs a group capturing yes or no")
		return cls(**compiled)


def classify(buffer: str,
			success: Union[re.Pattern, Sequence[re.Pattern]],
			retry: Optional[re.Pattern] = None,
			hard_failure: Optional[re.Pattern] = None) -> PollResult:
	"""Map everything drained since the last command to one poll result.

	A hard failure wins over success, and success wins over retry.
	``success`` may be several patterns, any of which counts.
	"""
	if isinstance(success, re.Pattern):
		success = (success,)
	if hard_failure is not None and hard_failure.search(buffer):
		return PollResult.HARD_FAILURE
	if any(pattern.search(buffer) for pattern in success):
		return PollResult.SUCCESS
	if retry is not None and retry.search(buffer):
		return PollResult.RETRY
	return PollResult.PENDING
