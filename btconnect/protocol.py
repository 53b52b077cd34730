"""Connect/disconnect/status retry loops on top of a control session."""

import re
import enum
import time
import subprocess
from typing import List, Optional, Sequence, Union

from colorama import Fore

from .errors import DeviceUnavailableError, PatternTimeoutError, ProfileSwitchError
from .log import log_connection, log_debug, log_info, log_profile
from .markers import Markers, PollResult, classify


class OperationState(enum.Enum):
	IDLE = "idle"
	ATTEMPTING = "attempting"
	SUCCEEDED = "succeeded"
	FAILED = "failed"


def audio_card_name(address: str, prefix: str = "bluez_card.", delimiter: str = ":") -> str:
	"""bluez_card.AA_BB_CC_DD_EE_FF for AA:BB:CC:DD:EE:FF"""
	return prefix + address.replace(delimiter, "_")


# ------------------------------
# AUDIO PROFILE SWITCHING
# ------------------------------
class AudioProfileSwitcher:
	"""Runs ``pactl set-card-profile <card> <profile>``."""

	def __init__(self, command: Optional[List[str]] = None, sink_profile: str = "a2dp_sink") -> None:
		self.command = list(command or ["pactl"])
		self.sink_profile = sink_profile

	def switch(self, card: str, profile: str) -> None:
		cmd = self.command + ["set-card-profile", card, profile]
		log_profile(f"Switching {card} to profile {profile}")
		try:
			result = subprocess.run(cmd, stdout=subprocess.PIPE, stderr=subprocess.STDOUT, text=True)
		except FileNotFoundError as e:
			raise ProfileSwitchError(card, profile, 127, f"{cmd[0]} not found") from e
		if result.returncode != 0:
			raise ProfileSwitchError(card, profile, result.returncode, result.stdout.strip())


# ------------------------------
# DEVICE CONNECTION PROTOCOL
# ------------------------------
class DeviceConnectionProtocol:
	"""
	Drives one device through the daemon's connect/disconnect commands.

	Every operation sends its command, then polls the session without
	blocking and classifies everything seen since the command was sent.
	Connect failures are transient and retried for as long as it takes;
	only an optional ``timeout`` or a process interrupt ends the loop.
	"""

	def __init__(self,
				markers: Optional[Markers] = None,
				profile_switcher: Optional[AudioProfileSwitcher] = None,
				poll_interval: float = 0.1,
				retry_delay: float = 0.5,
				status_timeout: float = 5.0) -> None:
		self.markers = markers or Markers.from_config()
		self.profile_switcher = profile_switcher or AudioProfileSwitcher()
		self.poll_interval = poll_interval
		self.retry_delay = retry_delay
		self.status_timeout = status_timeout
		self.state = OperationState.IDLE

	def connect(self, session, device_id: str, timeout: Optional[float] = None) -> None:
		log_connection(f"Connecting to {device_id}...")
		attempts = self._run_until_settled(
			session, f"connect {device_id}", device_id,
			success=self.markers.connect_success,
			retry=self.markers.connect_failure,
			hard_failure=self.markers.device_unavailable,
			timeout=timeout,
		)
		log_connection(f"Connected to {device_id} (attempts: {attempts})", "success")

	def disconnect(self, session, device_id: str, timeout: Optional[float] = None) -> None:
		log_connection(f"Disconnecting {device_id}...")
		# "not connected" already is the state we are after
		attempts = self._run_until_settled(
			session, f"disconnect {device_id}", device_id,
			success=(self.markers.disconnect_success, self.markers.not_connected),
			retry=self.markers.disconnect_failure,
			hard_failure=self.markers.device_unavailable,
			timeout=timeout,
		)
		log_connection(f"Disconnected {device_id} (attempts: {attempts})", "success")

	def is_connected(self, session, device_id: str) -> bool:
		session.read_available()
		session.send(f"info {device_id}")
		output = session.read_available(self.markers.connected_status, self.status_timeout)
		match = self.markers.connected_status.search(output)
		connected = match.group(1) == "yes"
		log_debug(f"{device_id} connected: {connected}")
		return connected

	def reset_profile(self, session, device_id: str, audio_card: str) -> None:
		"""Cycle the card profile off and back on around a reconnect.

		Clears the stuck negotiation where a device connects but never
		exposes its audio sink. A failed profile switch aborts at once.
		"""
		log_info(f"Resetting audio profile of {device_id}", Fore.MAGENTA)
		self.profile_switcher.switch(audio_card, "off")
		self.disconnect(session, device_id)
		self.connect(session, device_id)
		self.profile_switcher.switch(audio_card, self.profile_switcher.sink_profile)
		log_profile(f"Profile of {audio_card} restored to {self.profile_switcher.sink_profile}")

	def _run_until_settled(self,
						session,
						command: str,
						device_id: str,
						success: Union[re.Pattern, Sequence[re.Pattern]],
						retry: re.Pattern,
						hard_failure: re.Pattern,
						timeout: Optional[float]) -> int:
		"""Send ``command`` until ``success`` shows up; returns the number of sends."""
		deadline = time.monotonic() + timeout if timeout is not None else None
		self.state = OperationState.ATTEMPTING

		stale = session.read_available()
		if stale:
			log_debug(f"Discarding stale output: {stale!r}")

		attempts = 1
		session.send(command)
		buffer = ""
		while True:
			buffer += session.read_available()
			result = classify(buffer, success, retry, hard_failure)

			if result is PollResult.SUCCESS:
				self.state = OperationState.SUCCEEDED
				return attempts
			if result is PollResult.HARD_FAILURE:
				self.state = OperationState.FAILED
				raise DeviceUnavailableError(device_id, buffer)
			if deadline is not None and time.monotonic() >= deadline:
				self.state = OperationState.FAILED
				raise PatternTimeoutError(_describe(success), timeout, buffer)

			if result is PollResult.RETRY:
				log_connection(f"'{command}' failed (attempt {attempts}), retrying...", "warning")
				time.sleep(self.retry_delay)
				attempts += 1
				session.send(command)
				buffer = ""
			else:
				time.sleep(self.poll_interval)


def _describe(success: Union[re.Pattern, Sequence[re.Pattern]]) -> str:
	if isinstance(success, re.Pattern):
		return success.pattern
	return " | ".join(pattern.pattern for pattern in success)
