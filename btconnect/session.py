"""Line-oriented control session with a long-lived daemon.

bluetoothctl is conversational: besides replies to commands it prints
unsolicited notifications ([CHG], [NEW], ...) at any time, and it only
behaves like its interactive self on a terminal. The daemon therefore
runs on a pseudo-terminal whose master side is read without blocking;
callers drain whatever is there and match markers on the accumulated
text instead of doing blocking line reads.
"""

import os
import pty
import re
import time
import codecs
import errno
import fcntl
import select
import termios
import subprocess
from typing import List, Optional, Union

import psutil

from .errors import BtConnectError, PatternTimeoutError, SessionStartupTimeoutError
from .log import log_debug, log_session, log_warning
from .markers import Markers

ANSI_ESCAPE = re.compile(r"\x1b\[[0-9;?]*[A-Za-z]|[\x01\x02\r]")


def normalize_output(text: str) -> str:
	"""Strip colour escapes, readline markers and carriage returns."""
	return ANSI_ESCAPE.sub("", text)


class InteractiveSession:
	TERMINATE_TIMEOUT = 2.0

	def __init__(self,
				command: Optional[List[str]] = None,
				markers: Optional[Markers] = None,
				startup_timeout: float = 10.0,
				poll_interval: float = 0.1,
				default_timeout: float = 10.0) -> None:
		self.command = list(command or ["bluetoothctl"])
		self.markers = markers or Markers.from_config()
		self.startup_timeout = startup_timeout
		self.poll_interval = poll_interval
		self.default_timeout = default_timeout
		self.proc: Optional[subprocess.Popen] = None
		self.master_fd: Optional[int] = None
		# Keeps a multibyte character split across two reads intact
		self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

	@property
	def is_open(self) -> bool:
		return self.proc is not None

	@property
	def pid(self) -> Optional[int]:
		return self.proc.pid if self.proc else None

	def __enter__(self) -> "InteractiveSession":
		return self.open()

	def __exit__(self, exc_type, exc, tb) -> None:
		self.close()

	# Lifecycle
	def open(self) -> "InteractiveSession":
		"""Spawn the daemon and wait for its startup banner."""
		if self.proc is not None:
			raise RuntimeError("Control session already open")

		master_fd, slave_fd = pty.openpty()
		_disable_echo(slave_fd)
		try:
			# Own session: a Ctrl+C on our terminal must not reach the daemon,
			# teardown still needs it to disconnect the device.
			proc = subprocess.Popen(
				self.command,
				preexec_fn=os.setsid,
				stdin=slave_fd,
				stdout=slave_fd,
				stderr=slave_fd,
				close_fds=True
			)
		except FileNotFoundError as e:
			os.close(master_fd)
			raise BtConnectError(f"Control daemon not found: {self.command[0]}") from e
		finally:
			os.close(slave_fd)

		flags = fcntl.fcntl(master_fd, fcntl.F_GETFL)
		fcntl.fcntl(master_fd, fcntl.F_SETFL, flags | os.O_NONBLOCK)
		self.proc = proc
		self.master_fd = master_fd
		self._decoder.reset()
		log_session(f"Started {' '.join(self.command)} (PID: {proc.pid})")

		try:
			self.read_available(self.markers.agent_registered, self.startup_timeout)
		except PatternTimeoutError as e:
			self.close()
			raise SessionStartupTimeoutError(e.pattern, e.timeout, e.buffer) from e
		log_session("Control session ready")
		return self

	def close(self) -> None:
		"""Terminate the daemon and its children; a no-op once closed."""
		if self.proc is None:
			return
		proc, self.proc = self.proc, None
		master_fd, self.master_fd = self.master_fd, None

		try:
			parent = psutil.Process(proc.pid)
			procs = parent.children(recursive=True) + [parent]
			for p in procs:
				try:
					p.terminate()
				except psutil.NoSuchProcess:
					pass
			_, alive = psutil.wait_procs(procs, timeout=self.TERMINATE_TIMEOUT)
			for p in alive:
				log_warning(f"Process {p.pid} did not terminate gracefully - forcing kill")
				try:
					p.kill()
				except psutil.NoSuchProcess:
					pass
		except psutil.NoSuchProcess:
			log_debug(f"Control daemon {proc.pid} already exited")
		finally:
			try:
				proc.wait(timeout=self.TERMINATE_TIMEOUT)
			except subprocess.TimeoutExpired:
				log_warning(f"Control daemon {proc.pid} could not be reaped")
			if master_fd is not None:
				os.close(master_fd)
		log_session("Control session closed")

	# I/O
	def send(self, command: str) -> None:
		"""Write one line to the daemon; the reply is not read."""
		if self.master_fd is None:
			raise RuntimeError("Control session is not open")
		log_debug(f"> {command}")
		os.write(self.master_fd, f"{command}\n".encode())

	def read_available(self,
					wait_pattern: Union[re.Pattern, str, None] = None,
					timeout: Optional[float] = None) -> str:
		"""Drain buffered output, optionally waiting until it matches ``wait_pattern``.

		Without a pattern this never blocks and may return an empty string.
		With one, output is polled every ``poll_interval`` seconds until the
		text gathered during this call matches or ``timeout`` elapses, in
		which case PatternTimeoutError carries that text.
		"""
		buffer = self._drain()
		if wait_pattern is None:
			return buffer

		if isinstance(wait_pattern, str):
			wait_pattern = re.compile(wait_pattern)
		if timeout is None:
			timeout = self.default_timeout

		deadline = time.monotonic() + timeout
		while not wait_pattern.search(buffer):
			if time.monotonic() >= deadline:
				raise PatternTimeoutError(wait_pattern.pattern, timeout, buffer)
			time.sleep(self.poll_interval)
			buffer += self._drain()
		return buffer

	def _drain(self) -> str:
		if self.master_fd is None:
			raise RuntimeError("Control session is not open")

		data = b""
		while True:
			rlist, _, _ = select.select([self.master_fd], [], [], 0)
			if not rlist:
				break
			try:
				chunk = os.read(self.master_fd, 4096)
			except BlockingIOError:
				break
			except OSError as e:
				# EIO: the daemon closed its side of the terminal
				if e.errno == errno.EIO:
					break
				raise
			if not chunk:
				break
			data += chunk

		text = normalize_output(self._decoder.decode(data))
		for line in text.splitlines():
			if line.strip():
				log_debug(f"< {line}")
		return text


def _disable_echo(fd: int) -> None:
	"""Keep our own commands out of the output we match against."""
	attrs = termios.tcgetattr(fd)
	attrs[3] &= ~termios.ECHO
	termios.tcsetattr(fd, termios.TCSANOW, attrs)
