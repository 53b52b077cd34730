#!/usr/bin/env python3
"""
Tests for run coordination and teardown.

Radios, protocol and session are in-memory fakes that record every call
into one shared event list, so ordering and at-most-once guarantees can
be checked directly.
"""

import os
import sys
import signal
import unittest
from unittest import mock

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))
sys.path.insert(0, os.path.dirname(__file__))

from btconnect.errors import (
	DeviceUnavailableError,
	MixedRadioStateError,
	ProfileSwitchError,
	SessionStartupTimeoutError,
)
from btconnect.orchestrator import Operation, PendingInterruptFlags, SessionOrchestrator, SessionState
from btconnect.radio import RadioDevice
from scripted import ScriptedSession


class FakeRadioStore:

	def __init__(self, events, radios=None, error=None):
		self.events = events
		self.radios = radios if radios is not None else []
		self.error = error

	def list_radios(self, filter_label=None):
		self.events.append(("list", filter_label))
		if self.error:
			raise self.error
		return self.radios

	def unblock(self, devices):
		for device in devices:
			self.events.append(("unblock", device.id))
			device.blocked = False

	def block(self, devices):
		for device in devices:
			self.events.append(("block", device.id))
			device.blocked = True


class FakeProtocol:

	def __init__(self, events, connected=True):
		self.events = events
		self.connected = connected
		self.fail_on = {}

	def _record(self, name, *args):
		self.events.append((name,) + args)
		if name in self.fail_on:
			raise self.fail_on[name]

	def connect(self, session, device_id, timeout=None):
		self._record("connect", device_id)

	def disconnect(self, session, device_id, timeout=None):
		self._record("disconnect", device_id)

	def is_connected(self, session, device_id):
		self._record("status", device_id)
		return self.connected

	def reset_profile(self, session, device_id, audio_card):
		self._record("reset_profile", device_id, audio_card)


def blocked_radios():
	return [RadioDevice(id=1, label="hci0", blocked=True)]


def unblocked_radios():
	return [RadioDevice(id=1, label="hci0", blocked=False)]


class OrchestratorTestCase(unittest.TestCase):

	def setUp(self):
		self.events = []
		self.session = ScriptedSession()
		self.protocol = FakeProtocol(self.events)
		self.prompt = mock.Mock(side_effect=lambda text: self.events.append(("prompt",)))
		self.previous_sigterm = signal.getsignal(signal.SIGTERM)

	def tearDown(self):
		signal.signal(signal.SIGTERM, self.previous_sigterm)

	def make(self, radios, master_label=None, error=None):
		self.store = FakeRadioStore(self.events, radios, error)
		orchestrator = SessionOrchestrator(
			radio_store=self.store,
			protocol=self.protocol,
			session_factory=self._session_factory,
			device_id="AA:BB",
			audio_card="bluez_card.AA_BB",
			master_label=master_label,
			prompt=self.prompt,
		)
		return orchestrator

	def _session_factory(self):
		self.events.append(("session",))
		return self.session

	def names(self):
		return [event[0] for event in self.events]


class TestRun(OrchestratorTestCase):

	def test_blocked_radios_are_enabled_then_restored(self):
		orchestrator = self.make(blocked_radios())
		orchestrator.run(Operation.CONNECT)
		self.assertEqual(self.names(), ["list", "unblock", "session", "connect", "prompt", "disconnect", "block"])
		self.assertEqual(self.session.close_calls, 1)
		self.assertIs(orchestrator.state, SessionState.CLOSED)

	def test_unblocked_radios_are_left_alone(self):
		orchestrator = self.make(unblocked_radios())
		orchestrator.run(Operation.CONNECT)
		self.assertEqual(self.names(), ["list", "session", "connect"])
		self.prompt.assert_not_called()
		self.assertEqual(self.session.close_calls, 1)

	def test_mixed_radios_abort_before_any_change(self):
		orchestrator = self.make([], error=MixedRadioStateError(blocked_radios() + unblocked_radios()))
		with self.assertRaises(MixedRadioStateError):
			orchestrator.run(Operation.CONNECT)
		self.assertEqual(self.names(), ["list"])

	def test_master_label_is_passed_to_enumeration(self):
		self.make(unblocked_radios(), master_label="hci0").run(Operation.CONNECT)
		self.assertEqual(self.events[0], ("list", "hci0"))

	def test_reset_profile(self):
		orchestrator = self.make(unblocked_radios())
		orchestrator.run(Operation.RESET_PROFILE)
		self.assertIn(("reset_profile", "AA:BB", "bluez_card.AA_BB"), self.events)
		self.assertLess(self.names().index("connect"), self.names().index("reset_profile"))
		self.assertIs(orchestrator.state, SessionState.CLOSED)

	def test_disconnect_is_not_repeated_by_teardown(self):
		self.make(blocked_radios()).run(Operation.DISCONNECT)
		self.assertEqual(self.names(), ["list", "unblock", "session", "disconnect", "block"])

	def test_status_returns_answer_without_pause(self):
		self.protocol.connected = False
		result = self.make(blocked_radios()).run(Operation.STATUS)
		self.assertIs(result, False)
		self.prompt.assert_not_called()
		self.assertEqual(self.names(), ["list", "unblock", "session", "status", "disconnect", "block"])

	def test_end_of_input_counts_as_confirmation(self):
		self.prompt.side_effect = EOFError
		orchestrator = self.make(blocked_radios())
		orchestrator.run(Operation.CONNECT)
		self.assertEqual(self.names()[-2:], ["disconnect", "block"])

	def test_interrupt_handlers_are_restored(self):
		orchestrator = self.make(unblocked_radios())
		orchestrator.run(Operation.CONNECT)
		self.assertEqual(signal.getsignal(signal.SIGTERM), self.previous_sigterm)


class TestFailurePaths(OrchestratorTestCase):

	def test_profile_failure_restores_radios(self):
		self.protocol.fail_on["reset_profile"] = ProfileSwitchError("bluez_card.AA_BB", "off", 1)
		orchestrator = self.make(blocked_radios())
		with self.assertRaises(ProfileSwitchError):
			orchestrator.run(Operation.RESET_PROFILE)
		self.assertEqual(self.names()[-2:], ["disconnect", "block"])
		self.assertEqual(self.names().count("block"), 1)
		self.prompt.assert_not_called()
		self.assertIs(orchestrator.state, SessionState.FAILED)

	def test_disconnect_failure_during_teardown_still_restores_radios(self):
		self.protocol.fail_on["reset_profile"] = ProfileSwitchError("bluez_card.AA_BB", "off", 1)
		self.protocol.fail_on["disconnect"] = DeviceUnavailableError("AA:BB")
		with self.assertRaises(ProfileSwitchError):
			self.make(blocked_radios()).run(Operation.RESET_PROFILE)
		self.assertEqual(self.names()[-1], "block")

	def test_unexpected_disconnect_error_still_restores_radios(self):
		self.protocol.fail_on["disconnect"] = RuntimeError("daemon went away")
		orchestrator = self.make(blocked_radios())
		with self.assertRaises(RuntimeError):
			orchestrator.run(Operation.CONNECT)
		self.assertEqual(self.names()[-2:], ["disconnect", "block"])
		self.assertEqual(self.session.close_calls, 1)
		self.assertTrue(all(radio.blocked for radio in self.store.radios))
		self.assertTrue(orchestrator.flags.master_disable_initiated)

	def test_startup_timeout_restores_radios_without_disconnect(self):
		self.session.open = mock.Mock(side_effect=SessionStartupTimeoutError("Agent registered", 10, ""))
		self.session.is_open = False
		with self.assertRaises(SessionStartupTimeoutError):
			self.make(blocked_radios()).run(Operation.CONNECT)
		self.assertEqual(self.names(), ["list", "unblock", "session", "block"])

	def test_failure_with_radios_already_on(self):
		self.protocol.fail_on["connect"] = DeviceUnavailableError("AA:BB")
		with self.assertRaises(DeviceUnavailableError):
			self.make(unblocked_radios()).run(Operation.CONNECT)
		self.assertNotIn("block", self.names())
		self.assertEqual(self.session.close_calls, 1)


class TestTeardown(OrchestratorTestCase):

	def test_teardown_twice_acts_once(self):
		orchestrator = self.make(blocked_radios())
		orchestrator.radios = self.store.radios
		orchestrator.radios_unblocked = True
		orchestrator.session = self.session
		orchestrator.teardown()
		orchestrator.teardown()
		self.assertEqual(self.names(), ["disconnect", "block"])

	def test_interrupt_twice_acts_once_and_reraises(self):
		orchestrator = self.make(blocked_radios())
		orchestrator.radios = self.store.radios
		orchestrator.radios_unblocked = True
		orchestrator.session = self.session
		with mock.patch.object(orchestrator, "_reraise_signal") as reraise:
			orchestrator.handle_interrupt(signal.SIGINT, None)
			orchestrator.handle_interrupt(signal.SIGINT, None)
		self.assertEqual(self.names(), ["disconnect", "block"])
		self.assertEqual(reraise.call_args_list, [mock.call(signal.SIGINT)] * 2)
		self.assertIs(orchestrator.state, SessionState.FAILED)

	def test_interrupt_during_confirmation_wins_over_normal_exit(self):
		orchestrator = self.make(blocked_radios())

		def interrupted(text):
			self.events.append(("prompt",))
			orchestrator.handle_interrupt(signal.SIGTERM, None)

		self.prompt.side_effect = interrupted
		with mock.patch.object(orchestrator, "_reraise_signal") as reraise:
			orchestrator.run(Operation.CONNECT)
		reraise.assert_called_once_with(signal.SIGTERM)
		self.assertEqual(self.names(), ["list", "unblock", "session", "connect", "prompt", "disconnect", "block"])

	def test_interrupt_before_radios_changed(self):
		orchestrator = self.make(unblocked_radios())
		orchestrator.session = self.session
		with mock.patch.object(orchestrator, "_reraise_signal"):
			orchestrator.handle_interrupt(signal.SIGINT, None)
		self.assertEqual(self.names(), ["disconnect"])
		self.assertEqual(self.session.close_calls, 1)

	def test_interrupt_while_blocking_lets_cleanup_finish(self):
		radios = [RadioDevice(id=1, label="hci0", blocked=True), RadioDevice(id=2, label="hci1", blocked=True)]
		orchestrator = self.make(radios)
		block = self.store.block

		def interrupted_block(devices):
			for device in devices:
				block([device])
				if device.id == 1:
					orchestrator.handle_interrupt(signal.SIGHUP, None)

		self.store.block = interrupted_block
		with mock.patch.object(orchestrator, "_reraise_signal",
							side_effect=lambda signum: self.events.append(("reraise", signum))):
			orchestrator.run(Operation.CONNECT)
		self.assertEqual(self.events[-3:], [("block", 1), ("block", 2), ("reraise", signal.SIGHUP)])
		self.assertTrue(all(radio.blocked for radio in radios))

	def test_reraise_kills_with_same_signal(self):
		orchestrator = self.make(unblocked_radios())
		with mock.patch("btconnect.orchestrator.signal.signal") as set_handler, \
				mock.patch("btconnect.orchestrator.os.kill") as kill:
			orchestrator._reraise_signal(signal.SIGTERM)
		set_handler.assert_called_once_with(signal.SIGTERM, signal.SIG_DFL)
		kill.assert_called_once_with(os.getpid(), signal.SIGTERM)


class TestPendingInterruptFlags(unittest.TestCase):

	def test_each_flag_claimed_once(self):
		flags = PendingInterruptFlags()
		self.assertFalse(flags.slave_disconnect_initiated)
		self.assertTrue(flags.claim_slave_disconnect())
		self.assertFalse(flags.claim_slave_disconnect())
		self.assertTrue(flags.slave_disconnect_initiated)
		self.assertFalse(flags.master_disable_initiated)
		self.assertTrue(flags.claim_master_disable())
		self.assertFalse(flags.claim_master_disable())
		self.assertTrue(flags.master_disable_initiated)


if __name__ == "__main__":
	unittest.main()
