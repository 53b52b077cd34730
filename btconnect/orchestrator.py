"""Whole-run coordination: radio state, the control session and cleanup.

Radios that were all blocked when the run started are unblocked for its
duration and blocked again exactly once before it ends, whichever way it
ends. The interrupt handler and the normal exit path call the same
teardown; PendingInterruptFlags decides which of them performs each step.
"""

import os
import enum
import signal
from typing import Callable, Dict, List, Optional

from colorama import Fore

from .errors import BtConnectError
from .log import log_error, log_info, log_radio, log_session, log_warning
from .protocol import DeviceConnectionProtocol
from .radio import RadioDevice, RadioStateStore


class SessionState(enum.Enum):
	IDLE = "idle"
	CONNECTING = "connecting"
	CONNECTED = "connected"
	RESETTING_PROFILE = "resetting_profile"
	DISCONNECTING = "disconnecting"
	CLOSED = "closed"
	FAILED = "failed"


class Operation(enum.Enum):
	CONNECT = "connect"
	RESET_PROFILE = "reset-profile"
	DISCONNECT = "disconnect"
	STATUS = "status"


# Operations that leave the device in use until the user says otherwise
CONNECT_OPERATIONS = (Operation.CONNECT, Operation.RESET_PROFILE)


class PendingInterruptFlags:
	"""Two set-once flags guarding the teardown steps."""

	SLAVE_DISCONNECT = "slave_disconnect"
	MASTER_DISABLE = "master_disable"

	def __init__(self) -> None:
		self._claims: Dict[str, object] = {}

	def claim(self, name: str) -> bool:
		"""Set flag ``name``; True only for the caller that set it first."""
		token = object()
		# dict.setdefault is a single step for the interpreter, so a signal
		# handler cannot run between the check and the set.
		return self._claims.setdefault(name, token) is token

	def claim_slave_disconnect(self) -> bool:
		return self.claim(self.SLAVE_DISCONNECT)

	def claim_master_disable(self) -> bool:
		return self.claim(self.MASTER_DISABLE)

	@property
	def slave_disconnect_initiated(self) -> bool:
		return self.SLAVE_DISCONNECT in self._claims

	@property
	def master_disable_initiated(self) -> bool:
		return self.MASTER_DISABLE in self._claims


class SessionOrchestrator:
	INTERRUPT_SIGNALS = (signal.SIGINT, signal.SIGTERM, signal.SIGHUP)
	CONFIRMATION_PROMPT = "Press Enter when finished to disconnect and block the radio again..."

	def __init__(self,
				radio_store: RadioStateStore,
				protocol: DeviceConnectionProtocol,
				session_factory: Callable,
				device_id: Optional[str],
				audio_card: Optional[str] = None,
				master_label: Optional[str] = None,
				teardown_timeout: Optional[float] = 15.0,
				prompt: Callable[[str], str] = input) -> None:
		self.radio_store = radio_store
		self.protocol = protocol
		self.session_factory = session_factory
		self.device_id = device_id
		self.audio_card = audio_card
		self.master_label = master_label
		self.teardown_timeout = teardown_timeout
		self.prompt = prompt

		self.state = SessionState.IDLE
		self.flags = PendingInterruptFlags()
		self.session = None
		self.radios: List[RadioDevice] = []
		self.radios_unblocked = False
		self._previous_handlers: Dict[int, object] = {}
		self._tearing_down = False
		self._pending_signal: Optional[int] = None

	def run(self, operation: Operation = Operation.CONNECT) -> Optional[bool]:
		"""Run one operation end to end; returns the connection state for STATUS."""
		# Raises on mixed or missing radios before anything is touched
		self.radios = self.radio_store.list_radios(self.master_label)

		self._install_interrupt_handlers()
		try:
			if all(radio.blocked for radio in self.radios):
				log_radio("All radios are blocked, unblocking them for this session")
				# Set first: a partial unblock still has to be undone
				self.radios_unblocked = True
				self.radio_store.unblock(self.radios)

			self.session = self.session_factory()
			self.session.open()
			result = self._execute(operation)

			if self.radios_unblocked and operation in CONNECT_OPERATIONS:
				self._await_confirmation()
		except BaseException:
			self.state = SessionState.FAILED
			self.teardown(disconnect_slave=True)
			raise
		else:
			self.teardown(disconnect_slave=self.radios_unblocked)
			self.state = SessionState.CLOSED
			return result
		finally:
			self._restore_interrupt_handlers()
			if self._pending_signal is not None:
				self._reraise_signal(self._pending_signal)

	def teardown(self, disconnect_slave: bool = True) -> None:
		"""Disconnect the slave, close the session and re-block the radios.

		Safe to call any number of times from the exit path and the
		interrupt handler: each step happens at most once overall. The
		later steps run even when an earlier one raises.
		"""
		self._tearing_down = True
		try:
			if self.flags.claim_slave_disconnect() and disconnect_slave and self.device_id:
				self._disconnect_slave()
		finally:
			try:
				if self.session is not None:
					self.session.close()
			finally:
				if self.radios_unblocked and self.flags.claim_master_disable():
					log_radio("Restoring blocked state of the radios")
					self.radio_store.block(self.radios)
				self._tearing_down = False

	def handle_interrupt(self, signum, frame) -> None:
		if self._tearing_down:
			# Let the running teardown finish; run() re-raises afterwards
			log_warning(f"Received signal {signum} during cleanup, finishing cleanup first...")
			self._pending_signal = signum
			return
		log_warning(f"Received signal {signum}, shutting down...")
		self.state = SessionState.FAILED
		self.teardown(disconnect_slave=True)
		self._reraise_signal(signum)

	def _execute(self, operation: Operation) -> Optional[bool]:
		if operation is Operation.STATUS:
			connected = self.protocol.is_connected(self.session, self.device_id)
			log_info(f"{self.device_id} connected: {'yes' if connected else 'no'}", Fore.CYAN)
			return connected

		if operation is Operation.DISCONNECT:
			self.state = SessionState.DISCONNECTING
			# The operation itself is the disconnect; teardown must not repeat it
			self.flags.claim_slave_disconnect()
			self.protocol.disconnect(self.session, self.device_id)
			return None

		self.state = SessionState.CONNECTING
		self.protocol.connect(self.session, self.device_id)
		self.state = SessionState.CONNECTED

		if operation is Operation.RESET_PROFILE:
			self.state = SessionState.RESETTING_PROFILE
			self.protocol.reset_profile(self.session, self.device_id, self.audio_card)
			self.state = SessionState.CONNECTED
		return None

	def _await_confirmation(self) -> None:
		try:
			self.prompt(self.CONFIRMATION_PROMPT)
		except EOFError:
			log_warning("No input available, treating end of input as confirmation")

	def _disconnect_slave(self) -> None:
		if self.session is None or not self.session.is_open:
			log_warning(f"No control session, cannot disconnect {self.device_id}")
			return
		if self.state is not SessionState.FAILED:
			self.state = SessionState.DISCONNECTING
		try:
			self.protocol.disconnect(self.session, self.device_id, timeout=self.teardown_timeout)
		except BtConnectError as e:
			# Radios must still be restored
			log_error(f"Could not disconnect {self.device_id}: {e}")

	def _install_interrupt_handlers(self) -> None:
		for signum in self.INTERRUPT_SIGNALS:
			self._previous_handlers[signum] = signal.getsignal(signum)
			signal.signal(signum, self.handle_interrupt)
		log_session("Interrupt handlers installed")

	def _restore_interrupt_handlers(self) -> None:
		for signum, handler in self._previous_handlers.items():
			signal.signal(signum, handler if handler is not None else signal.SIG_DFL)
		self._previous_handlers.clear()

	def _reraise_signal(self, signum: int) -> None:
		"""Die from ``signum`` so the caller sees an interrupted run."""
		signal.signal(signum, signal.SIG_DFL)
		os.kill(os.getpid(), signum)
