import argparse
from typing import List, Optional

from colorama import Fore

from . import config as cfg
from .errors import BtConnectError, PatternTimeoutError, DeviceUnavailableError, ProfileSwitchError
from .log import log_error, log_info, log_config
from .markers import Markers
from .orchestrator import Operation, SessionOrchestrator
from .protocol import AudioProfileSwitcher, DeviceConnectionProtocol, audio_card_name
from .radio import RadioStateStore
from .session import InteractiveSession


def build_parser() -> argparse.ArgumentParser:
	parser = argparse.ArgumentParser(
		prog="btconnect",
		description="Connect a Bluetooth audio device, enabling the radio for the duration if it is blocked",
	)
	parser.add_argument('device', nargs='?', default=None,
						help='Friendly device name from the config file (default: the first configured device)')
	mode = parser.add_mutually_exclusive_group()
	mode.add_argument('-r', '--reset-profile', dest='operation', action='store_const', const=Operation.RESET_PROFILE,
					help='After connecting, cycle the audio profile off/on around a reconnect')
	mode.add_argument('-d', '--disconnect', dest='operation', action='store_const', const=Operation.DISCONNECT,
					help='Disconnect the device instead of connecting it')
	mode.add_argument('-s', '--status', dest='operation', action='store_const', const=Operation.STATUS,
					help="Print 'yes' or 'no' depending on whether the device is connected")
	parser.add_argument('-m', '--master', default=None,
						help='Label of the host radio to use, e.g. hci0 (overrides config)')
	parser.add_argument('-c', '--config', default=cfg.config_path,
						help=f'Configuration file (default: {cfg.config_path})')
	parser.set_defaults(operation=Operation.CONNECT)
	return parser


def build_orchestrator(config: dict, device_id: str, master_label: Optional[str]) -> SessionOrchestrator:
	timeouts = config["Timeouts"]
	audio = config["Audio"]
	markers = Markers.from_config(config.get("Markers"))

	def session_factory() -> InteractiveSession:
		return InteractiveSession(
			command=cfg.command(config, "Daemon"),
			markers=markers,
			startup_timeout=timeouts["Startup"],
			poll_interval=timeouts["Poll_Interval"],
			default_timeout=timeouts["Status"],
		)

	protocol = DeviceConnectionProtocol(
		markers=markers,
		profile_switcher=AudioProfileSwitcher(cfg.command(config, "Audio"), audio["Sink_Profile"]),
		poll_interval=timeouts["Poll_Interval"],
		retry_delay=timeouts["Retry_Delay"],
		status_timeout=timeouts["Status"],
	)
	return SessionOrchestrator(
		radio_store=RadioStateStore(cfg.command(config, "Radio"), config["Radio"]["Type"]),
		protocol=protocol,
		session_factory=session_factory,
		device_id=device_id,
		audio_card=audio_card_name(device_id, audio["Card_Prefix"], audio["Address_Delimiter"]),
		master_label=master_label,
		teardown_timeout=timeouts["Teardown"],
	)


def report_error(error: BtConnectError) -> None:
	log_error(str(error))
	if isinstance(error, (PatternTimeoutError, DeviceUnavailableError)) and error.buffer.strip():
		log_error(f"Daemon output:\n{error.buffer.rstrip()}")
	elif isinstance(error, ProfileSwitchError) and error.output:
		log_error(f"Command output: {error.output}")


# ------------------------------
# ENTRY POINT
# ------------------------------
def main(argv: Optional[List[str]] = None) -> int:
	args = build_parser().parse_args(argv)

	try:
		config = cfg.load_config(args.config)
		name, device_id = cfg.select_device(config, args.device)
		master_label = args.master or cfg.master_label(config)
		if master_label:
			log_config(f"Master radio: {master_label}")
		log_info(f"{args.operation.value.capitalize()}: {name} ({device_id})", Fore.BLUE)

		orchestrator = build_orchestrator(config, device_id, master_label)
		result = orchestrator.run(args.operation)
	except BtConnectError as e:
		report_error(e)
		return 1

	if args.operation is Operation.STATUS:
		print("yes" if result else "no")
	return 0
