import logging

import httpx

from smartsafe.core.config import Settings
from smartsafe.services.events import BackgroundDispatcher

logger = logging.getLogger(__name__)


class LockActuator:
    """
    Servo lock driven by a single GET to `<actuator_url><angle>`. There is no
    acknowledgment; a request that does not raise is taken as done.
    """

    def __init__(self, settings: Settings, dispatcher: BackgroundDispatcher, client: httpx.AsyncClient | None = None):
        self.url = settings.actuator_url
        self.open_angle = settings.actuator_open_angle
        self.close_angle = settings.actuator_close_angle
        self.timeout = settings.actuator_timeout_seconds
        self.dispatcher = dispatcher
        self._client = client

    def open(self) -> None:
        self.dispatcher.submit("actuator:open", lambda: self.send(self.open_angle))

    def close(self) -> None:
        self.dispatcher.submit("actuator:close", lambda: self.send(self.close_angle))

    async def send(self, angle: str) -> None:
        if not self.url:
            logger.warning("ACTUATOR_URL not configured, skipping servo command %s", angle)
            return
        target = f"{self.url}{angle}"
        if self._client is not None:
            resp = await self._client.get(target, timeout=self.timeout)
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.get(target)
        resp.raise_for_status()
        logger.info("Servo command %s sent", angle)
