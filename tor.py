import asyncio
import socket
import time

from stem import Signal
from stem.control import Controller


class TorNetwork:
    """Optional Tor exit for sessions; a new circuit is requested on every rotation."""

    def __init__(self, host, socks_port, control_port, password, min_interval_s, logger):
        self.host = host
        self.socks_port = socks_port
        self.control_port = control_port
        self.password = password
        self.min_interval_s = min_interval_s
        self.logger = logger
        self._last = 0.0

    @classmethod
    def from_config(cls, cfg, logger):
        return cls(
            host=cfg.tor_socks_host,
            socks_port=cfg.tor_socks_port,
            control_port=cfg.tor_control_port,
            password=cfg.tor_control_password,
            min_interval_s=cfg.tor_rotation_min_interval_s,
            logger=logger,
        )

    def is_available(self) -> bool:
        try:
            with socket.create_connection((self.host, self.socks_port), timeout=2):
                self.logger.info("[TOR] SOCKS proxy reachable.")
                return True
        except OSError:
            self.logger.warning("[TOR] SOCKS proxy not reachable.")
            return False

    def proxy_settings(self) -> dict | None:
        if self.is_available():
            return {"server": f"socks5://{self.host}:{self.socks_port}"}
        return None

    def _signal_newnym(self):
        with Controller.from_port(address=self.host, port=self.control_port) as c:
            if self.password:
                c.authenticate(password=self.password)
            else:
                c.authenticate()
            c.signal(Signal.NEWNYM)

    async def new_identity(self) -> bool:
        if (time.time() - self._last) < self.min_interval_s:
            self.logger.info("[TOR] circuit rotated recently, keeping it")
            return False
        try:
            await asyncio.to_thread(self._signal_newnym)
        except Exception as e:
            self.logger.warning(f"[TOR] rotation failed: {e}")
            return False
        self._last = time.time()
        self.logger.info("[TOR] NEWNYM requested.")
        return True
