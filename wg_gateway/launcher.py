"""
Tunnel Launchers

The only code that touches the real WireGuard interface. The service
controller drives a launcher; tests drive the controller with a fake one.
"""

import logging
import subprocess
from typing import List

logger = logging.getLogger(__name__)


class LauncherError(Exception):
    """The daemon could not be brought up, down or queried"""


class TunnelLauncher:
    """Interface the service controller expects"""

    def up(self) -> None:
        raise NotImplementedError

    def down(self) -> None:
        raise NotImplementedError

    def restart(self) -> None:
        self.down()
        self.up()

    def is_up(self) -> bool:
        raise NotImplementedError


class WgQuickLauncher(TunnelLauncher):
    """Drives `wg-quick up/down <interface>`"""

    def __init__(self, interface: str = 'wg0', timeout: int = 30):
        self.interface = interface
        self.timeout = timeout

    def _run(self, cmd: List[str]) -> str:
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                check=True
            )
            return result.stdout
        except subprocess.CalledProcessError as e:
            stderr = (e.stderr or '').strip()
            raise LauncherError(f"{' '.join(cmd)} exited {e.returncode}: {stderr}") from e
        except subprocess.TimeoutExpired as e:
            raise LauncherError(f"{' '.join(cmd)} timed out after {self.timeout}s") from e
        except FileNotFoundError as e:
            raise LauncherError(f"{cmd[0]} not found") from e
        except OSError as e:
            raise LauncherError(f"{cmd[0]} could not be run: {e}") from e

    def up(self) -> None:
        logger.info(f"Bringing up {self.interface}")
        self._run(['wg-quick', 'up', self.interface])

    def down(self) -> None:
        logger.info(f"Bringing down {self.interface}")
        self._run(['wg-quick', 'down', self.interface])

    def is_up(self) -> bool:
        try:
            self._run(['wg', 'show', self.interface])
            return True
        except LauncherError:
            return False
