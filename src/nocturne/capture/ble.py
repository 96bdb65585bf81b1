"""BLE motion source built on bleak.

Wearables and bed sensors commonly push IMU data as notifications on a
custom characteristic, packed as little-endian int16 x/y/z triplets:

    Bytes 0-5:   sample 0 (x, y, z) int16 LE
    Bytes 6-11:  sample 1
    ...

A raw value times *scale* gives g (accelerometer) or rad/s (gyroscope).
Triplets in one notification are assumed to be evenly spaced at the source
rate and to end at the arrival time.

bleak is asyncio-based while :class:`SensorSource` is not, so each source
owns a private event loop on a daemon thread.
"""

from __future__ import annotations

import asyncio
import struct
import threading
import time
from typing import Any, Callable

from bleak import BleakClient
from bleak.backends.characteristic import BleakGATTCharacteristic

from nocturne import config
from nocturne.capture.base import SampleCallback, SensorSource
from nocturne.models import SensorKind

logger = config.get_logger()

SAMPLE_SIZE = 6  # 3 axes × 2 bytes
DEFAULT_SCALE = 1.0 / 2048.0  # int16 → g (±16 g range)
CONNECT_TIMEOUT_S = 20.0


def decode_imu_payload(
    payload: bytes | bytearray,
    scale: float = DEFAULT_SCALE,
) -> list[tuple[float, float, float]]:
    """Decode packed int16 LE x/y/z triplets.

    Trailing bytes that do not form a whole triplet are ignored.
    """
    n = len(payload) // SAMPLE_SIZE
    samples = []
    for i in range(n):
        x, y, z = struct.unpack_from("<hhh", payload, i * SAMPLE_SIZE)
        samples.append((x * scale, y * scale, z * scale))
    return samples


class BleImuSource(SensorSource):
    """Accelerometer or gyroscope readings from a BLE notify characteristic.

    Args:
        address: Peripheral BLE address.
        char_uuid: Notify characteristic carrying the IMU triplets.
        kind: ``accel`` or ``gyro``.
        rate_hz: Sample rate of the peripheral.
        scale: Raw int16 → unit scale factor.
        client_factory: Builds the client for *address* (BleakClient by
            default).
    """

    def __init__(
        self,
        address: str,
        char_uuid: str,
        kind: SensorKind = SensorKind.ACCEL,
        rate_hz: float = 10.0,
        scale: float = DEFAULT_SCALE,
        client_factory: Callable[[str], Any] = BleakClient,
    ) -> None:
        kind = SensorKind(kind)
        if kind not in (SensorKind.ACCEL, SensorKind.GYRO):
            raise ValueError(f"BLE IMU source cannot deliver {kind.value} readings")
        self.address = address
        self.char_uuid = char_uuid
        self.kind = kind
        self.rate_hz = rate_hz
        self.scale = scale
        self.client_factory = client_factory
        self.packet_count = 0
        self._client: Any = None
        self._callback: SampleCallback | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._thread: threading.Thread | None = None

    def is_available(self) -> bool:
        return bool(self.address and self.char_uuid)

    # -- notification handling ----------------------------------------------

    def _on_notification(self, _char: BleakGATTCharacteristic, data: bytearray) -> None:
        callback = self._callback
        if callback is None:
            return
        samples = decode_imu_payload(data, self.scale)
        if not samples:
            return
        self.packet_count += 1
        now_ms = int(time.time() * 1000)
        period_ms = 1000.0 / self.rate_hz
        n = len(samples)
        for i, xyz in enumerate(samples):
            callback(int(now_ms - (n - 1 - i) * period_ms), xyz)

    # -- async side -----------------------------------------------------------

    async def connect(self) -> None:
        self._client = self.client_factory(self.address)
        await self._client.connect()
        await self._client.start_notify(self.char_uuid, self._on_notification)
        logger.info("Subscribed to %s on %s", self.char_uuid, self.address)

    async def disconnect(self) -> None:
        client, self._client = self._client, None
        if client is None:
            return
        try:
            await client.stop_notify(self.char_uuid)
        finally:
            await client.disconnect()
        logger.info("Disconnected from %s", self.address)

    # -- SensorSource ---------------------------------------------------------

    def _run(self, coro: Any, timeout: float = CONNECT_TIMEOUT_S) -> None:
        if self._loop is None:
            self._loop = asyncio.new_event_loop()
            self._thread = threading.Thread(
                target=self._loop.run_forever, name=f"ble-{self.address}", daemon=True
            )
            self._thread.start()
        future = asyncio.run_coroutine_threadsafe(coro, self._loop)
        try:
            future.result(timeout)
        except Exception:
            # A timed-out or failed call must not keep running on the loop
            future.cancel()
            raise

    def _shutdown_loop(self) -> None:
        loop, self._loop = self._loop, None
        if loop is None:
            return
        loop.call_soon_threadsafe(loop.stop)
        if self._thread is not None:
            self._thread.join(timeout=5.0)
            self._thread = None
        loop.close()

    def start(self, callback: SampleCallback) -> None:
        self._callback = callback
        try:
            self._run(self.connect())
        except Exception:
            self._callback = None
            self._shutdown_loop()
            raise

    def stop(self) -> None:
        self._callback = None
        try:
            if self._client is not None and self._loop is not None:
                self._run(self.disconnect())
        finally:
            self._shutdown_loop()
