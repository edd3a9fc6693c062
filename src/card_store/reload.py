"""Optional reverse-proxy reload hook.

Nothing in the store calls this. The HTTP layer runs it after a bundle is
created or deleted, and only when a reload command has been configured.
"""

import logging
import subprocess
from typing import List, Sequence

logger = logging.getLogger(__name__)


class ProxyReloader:
    """Runs an external reload command, e.g. ``caddy reload --config /etc/caddy/Caddyfile``."""

    def __init__(self, command: Sequence[str], timeout: float = 30.0):
        if not command:
            raise ValueError("Reload command must not be empty")
        self.command: List[str] = list(command)
        self.timeout = timeout

    def reload(self) -> bool:
        """Run the command. Returns False (and logs) on any failure; never raises."""
        try:
            result = subprocess.run(
                self.command,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                check=False,
            )
        except FileNotFoundError:
            logger.warning("Proxy reload failed: %s not found", self.command[0])
            return False
        except subprocess.TimeoutExpired:
            logger.warning("Proxy reload timed out after %ss", self.timeout)
            return False

        if result.returncode != 0:
            error_msg = result.stderr.strip() or result.stdout.strip()
            logger.warning("Proxy reload failed (exit %d): %s", result.returncode, error_msg)
            return False

        logger.info("Proxy reloaded")
        return True
