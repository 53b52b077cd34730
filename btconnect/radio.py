"""Host radio kill-switches, driven through rfkill.

Enumeration runs ``rfkill --noheadings --output ID,TYPE,DEVICE,SOFT`` and
keeps the rows of one radio type; toggling runs ``rfkill block|unblock
<id>`` once per device. Toggles are not rolled back: if a later device
fails, the earlier ones stay as they were switched.
"""

import subprocess
from dataclasses import dataclass
from typing import List, Optional

from .errors import NoRadiosFoundError, MixedRadioStateError, RadioCommandError, RadioToggleError
from .log import log_debug, log_radio


@dataclass
class RadioDevice:
	"""One host wireless radio kill-switch."""
	id: int
	label: str
	blocked: bool
	type: str = "bluetooth"


class RadioStateStore:
	LIST_ARGS = ["--noheadings", "--output", "ID,TYPE,DEVICE,SOFT"]

	def __init__(self, command: Optional[List[str]] = None, radio_type: str = "bluetooth") -> None:
		self.command = list(command or ["rfkill"])
		self.radio_type = radio_type

	def list_radios(self, filter_label: Optional[str] = None) -> List[RadioDevice]:
		"""Enumerate radios of the configured type, optionally only the one labelled ``filter_label``.

		Raises NoRadiosFoundError when nothing matches and, when no filter
		is given, MixedRadioStateError if the radios disagree on blocked.
		"""
		output = self._run_list()
		radios = [r for r in parse_radio_table(output) if r.type == self.radio_type]
		if filter_label:
			radios = [r for r in radios if r.label == filter_label]

		if not radios:
			raise NoRadiosFoundError(filter_label)

		if not filter_label and len({r.blocked for r in radios}) > 1:
			raise MixedRadioStateError(radios)

		log_debug(f"Radios: {radios}")
		return radios

	def unblock(self, devices: List[RadioDevice]) -> None:
		for device in devices:
			self._toggle(device, "unblock")
			device.blocked = False

	def block(self, devices: List[RadioDevice]) -> None:
		for device in devices:
			self._toggle(device, "block")
			device.blocked = True

	def _run_list(self) -> str:
		cmd = self.command + self.LIST_ARGS
		try:
			result = subprocess.run(cmd, stdout=subprocess.PIPE, stderr=subprocess.STDOUT, text=True)
		except FileNotFoundError as e:
			raise RadioCommandError(f"Radio command not found: {cmd[0]}") from e
		if result.returncode != 0:
			raise RadioCommandError(f"Command failed: {' '.join(cmd)} -> {result.stdout.strip()}")
		return result.stdout

	def _toggle(self, device: RadioDevice, verb: str) -> None:
		cmd = self.command + [verb, str(device.id)]
		log_radio(f"{verb.capitalize()}ing radio {device.id} ({device.label})")
		result = subprocess.run(cmd, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL)
		if result.returncode != 0:
			raise RadioToggleError(device, verb, result.returncode)


def parse_radio_table(output: str) -> List[RadioDevice]:
	"""Parse ``ID TYPE DEVICE SOFT`` rows; lines that do not fit are skipped."""
	radios: List[RadioDevice] = []
	for line in output.splitlines():
		fields = line.split()
		if len(fields) < 4 or not fields[0].isdigit():
			continue
		status = fields[-1].lower()
		if status not in ("blocked", "unblocked"):
			continue
		radios.append(RadioDevice(
			id=int(fields[0]),
			type=fields[1],
			label=" ".join(fields[2:-1]),
			blocked=status == "blocked",
		))
	return radios
