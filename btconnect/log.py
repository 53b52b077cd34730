import os
import logging

from colorama import init as colorama_init, Fore, Style

colorama_init(autoreset=True)

# ------------------------------
# Logging Setup
# ------------------------------
DEBUG: bool = os.getenv('DEBUG', '0') == '1'
LOG_FORMAT = f"%(asctime)s {Fore.CYAN}[DEBUG] %(message)s{Style.RESET_ALL}" if DEBUG else "%(asctime)s [INFO] %(message)s"
logging.basicConfig(level=logging.DEBUG if DEBUG else logging.INFO,
					format=LOG_FORMAT,
					datefmt="%H:%M:%S")
logger = logging.getLogger("btconnect")

# ------------------------------
# LOGGING UTILITIES
# ------------------------------
def log_info(message: str, color: str = Fore.GREEN) -> None:
	"""Consistent info logging with optional color"""
	logger.info(f"{color}{message}{Style.RESET_ALL}")

def log_warning(message: str) -> None:
	"""Consistent warning logging"""
	logger.warning(f"{Fore.YELLOW}{message}{Style.RESET_ALL}")

def log_error(message: str) -> None:
	"""Consistent error logging"""
	logger.error(f"{Fore.RED}{message}{Style.RESET_ALL}")

def log_debug(message: str) -> None:
	"""Consistent debug logging"""
	if DEBUG:
		logger.debug(f"{Fore.CYAN}{message}{Style.RESET_ALL}")

def log_config(message: str) -> None:
	"""Consistent config logging"""
	logger.info(f"{Fore.MAGENTA}[config] {message}{Style.RESET_ALL}")

def log_radio(message: str) -> None:
	"""Kill-switch changes"""
	logger.info(f"{Fore.BLUE}[RADIO] {message}{Style.RESET_ALL}")

def log_session(message: str) -> None:
	"""Control daemon session lifecycle"""
	logger.info(f"{Fore.CYAN}[SESSION] {message}{Style.RESET_ALL}")

def log_connection(message: str, status: str = "info") -> None:
	"""Consistent connection status logging"""
	colors = {
		"success": Fore.GREEN,
		"error": Fore.RED,
		"warning": Fore.YELLOW,
		"info": Fore.BLUE
	}
	color = colors.get(status, Fore.BLUE)
	logger.info(f"{color}[CONN] {message}{Style.RESET_ALL}")

def log_profile(message: str) -> None:
	"""Consistent audio profile logging"""
	logger.info(f"{Fore.MAGENTA}[AUDIO] {message}{Style.RESET_ALL}")
