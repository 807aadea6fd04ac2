from .logger import JsonFormatter, TextFormatter, setup_logging
from .netinfo import detect_ip, get_host_ip, get_internal_ip

__all__ = [
	"JsonFormatter",
	"TextFormatter",
	"setup_logging",
	"detect_ip",
	"get_host_ip",
	"get_internal_ip",
]
