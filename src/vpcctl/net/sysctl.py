"""Process-wide kernel toggles under /proc/sys."""

from pathlib import Path

from vpcctl.exceptions import PrimitiveError
from vpcctl.utils.logger import get_logger

logger = get_logger(__name__)

PROC_SYS = Path("/proc/sys")

IP_FORWARD = "net.ipv4.ip_forward"
RP_FILTER = "net.ipv4.conf.all.rp_filter"


def _key_path(key: str, root: Path) -> Path:
    return root / key.replace(".", "/")


def write_sysctl(key: str, value: str, root: Path = PROC_SYS) -> None:
    """Write a sysctl value (equivalent to ``sysctl -w key=value``)."""
    path = _key_path(key, root)
    try:
        with open(path, "w") as f:
            f.write(value)
    except OSError as e:
        raise PrimitiveError(f"sysctl -w {key}={value}", str(e))
    logger.info(f"Set {key}={value}")


def read_sysctl(key: str, root: Path = PROC_SYS) -> str | None:
    """Read a sysctl value, or None if it cannot be read."""
    try:
        with open(_key_path(key, root), "r") as f:
            return f.read().strip()
    except OSError:
        return None
