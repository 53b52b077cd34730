import os
import json
import copy
import shlex
from typing import Dict, List, Optional, Tuple

from .errors import ConfigError
from .log import log_config, log_warning, log_error

# ------------------------------
# CONFIGURATION
# ------------------------------
config_path = "~/.config/btconnect/config.json"

DEFAULT_CONFIG: dict = {
	"Master": {
		"Label": "",
	},
	# Ordered: the first entry is the default slave device
	"Devices": {},
	"Daemon": {
		"Command": ["bluetoothctl"],
	},
	"Radio": {
		"Command": ["rfkill"],
		"Type": "bluetooth",
	},
	"Audio": {
		"Command": ["pactl"],
		"Card_Prefix": "bluez_card.",
		"Address_Delimiter": ":",
		"Sink_Profile": "a2dp_sink",
	},
	"Timeouts": {
		"Startup": 10.0,
		"Status": 5.0,
		"Teardown": 15.0,
		"Poll_Interval": 0.1,
		"Retry_Delay": 0.5,
	},
	"Markers": {},
}


def deep_merge(default: dict, override: dict) -> None:
	for key, value in override.items():
		if key in default and isinstance(default[key], dict) and isinstance(value, dict) and default[key]:
			deep_merge(default[key], value)
		else:
			default[key] = value


def load_config(path: str = config_path) -> dict:
	"""
	Load configuration from JSON file, merging defaults with user overrides.

	A missing file is created with the defaults so the user has something
	to edit; an unreadable one is reported and the defaults are used.
	"""
	path = os.path.expanduser(path)
	config = copy.deepcopy(DEFAULT_CONFIG)

	if os.path.isfile(path):
		try:
			with open(path, 'r') as f:
				user_config = json.load(f)
			if not isinstance(user_config, dict):
				raise ConfigError(f"Top level of {path} must be an object")
			deep_merge(config, user_config)
			log_config(f"Loaded configuration from: {path}")
		except (json.JSONDecodeError, IOError) as e:
			log_warning(f"Failed to load config, using defaults: {e}")
	else:
		try:
			os.makedirs(os.path.dirname(path), exist_ok=True)
			with open(path, 'w') as f:
				json.dump(config, f, indent=4)
			log_config(f"Created default config at: {path}")
		except IOError as e:
			log_error(f"Failed to write default config: {e}")

	return config


def master_label(config: dict) -> Optional[str]:
	return config["Master"].get("Label") or None


def select_device(config: dict, name: Optional[str] = None) -> Tuple[str, str]:
	"""Return (friendly name, hardware address) for the requested slave.

	Without a name the first configured device is used.
	"""
	devices: Dict[str, str] = config.get("Devices") or {}
	if not isinstance(devices, dict):
		raise ConfigError("\"Devices\" must be an object mapping device names to addresses")
	if not devices:
		raise ConfigError("No devices configured; add one under \"Devices\" in the config file")

	if name is None:
		name = next(iter(devices))
	elif name not in devices:
		known = ", ".join(devices)
		raise ConfigError(f"Unknown device {name!r} (configured: {known})")

	address = devices[name]
	if not address:
		raise ConfigError(f"Device {name!r} has no address configured")
	return name, address


def command(config: dict, section: str) -> List[str]:
	value = config[section]["Command"]
	if isinstance(value, str):
		return shlex.split(value)
	return list(value)
