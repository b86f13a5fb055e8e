"""BLE notification source.

Thin bleak wrapper: connect to the band, subscribe to the data
characteristic and hand every notification to the orchestrator.
Scanning policy, bonding and reconnects stay with the caller.
"""

from __future__ import annotations

import asyncio

import structlog
from bleak import BleakClient, BleakScanner
from bleak.exc import BleakError

from monitor.orchestrator import SessionOrchestrator
from shared.config import settings
from shared.exceptions import BLEConnectionError

logger = structlog.get_logger()


class BleNotificationSource:
    """Feeds notifications from one GATT characteristic into a SessionOrchestrator.

    Use as an async context manager:

        async with BleNotificationSource(address, orchestrator):
            await stop_event.wait()
    """

    def __init__(
        self,
        address: str,
        orchestrator: SessionOrchestrator,
        characteristic_uuid: str | None = None,
        timeout: float | None = None,
    ):
        self.address = address
        self.characteristic_uuid = characteristic_uuid or settings.characteristic_uuid
        self.timeout = timeout or settings.ble_connect_timeout_seconds
        self._orchestrator = orchestrator
        self._client: BleakClient | None = None

    async def __aenter__(self) -> BleNotificationSource:
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.disconnect()

    @property
    def is_connected(self) -> bool:
        return self._client is not None and self._client.is_connected

    async def connect(self) -> None:
        """Connect and start notifications.

        Raises:
            BLEConnectionError: device not found, connect or subscribe failed
        """
        if self.is_connected:
            return

        device = await BleakScanner.find_device_by_address(self.address, timeout=self.timeout)
        if device is None:
            raise BLEConnectionError(f"Device {self.address} not found during scan")

        client = BleakClient(device, disconnected_callback=self._on_disconnect)
        try:
            await client.connect(timeout=self.timeout)
            await client.start_notify(self.characteristic_uuid, self._on_notify)
        except (BleakError, asyncio.TimeoutError) as e:
            if client.is_connected:
                await client.disconnect()
            raise BLEConnectionError(f"Failed to subscribe to {self.address}: {e}") from e

        self._client = client
        logger.info("ble_subscribed", address=self.address, characteristic=self.characteristic_uuid)

    async def disconnect(self) -> None:
        if self._client is None:
            return
        try:
            if self._client.is_connected:
                await self._client.stop_notify(self.characteristic_uuid)
                await self._client.disconnect()
        except BleakError as e:
            logger.warning("ble_disconnect_failed", address=self.address, error=str(e))
        finally:
            self._client = None

    def _on_notify(self, sender, data: bytearray) -> None:
        self._orchestrator.on_frame(bytes(data))

    def _on_disconnect(self, client: BleakClient) -> None:
        logger.warning("ble_disconnected", address=self.address)
