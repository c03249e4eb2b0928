"""PositionBroadcaster — publishes the asserted position to outside readers.

The published record is the single source of truth for cross-process
observers.  Its wire shape is fixed:

    {"is_active": bool, "lat_bits": int, "lng_bits": int}

``lat_bits`` / ``lng_bits`` are the raw IEEE-754 bit patterns of the 64-bit
doubles as signed integers (what ``Double.toBits`` yields on the JVM), so a
reader reconstructs the exact value instead of a float32 approximation.

A coordinate is never published while inactive; ``publish(False, coord)``
publishes ``(False, None)``.
"""

from __future__ import annotations

import json
import os
import struct
import tempfile
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Protocol

import paho.mqtt.client as mqtt
from loguru import logger

from relocate.geo import Coordinate

KEY_ACTIVE = "is_active"
KEY_LAT = "lat_bits"
KEY_LNG = "lng_bits"


def double_to_bits(value: float) -> int:
    """Signed 64-bit integer holding the bit pattern of ``value``."""
    return struct.unpack(">q", struct.pack(">d", value))[0]


def bits_to_double(bits: int) -> float:
    return struct.unpack(">d", struct.pack(">q", bits))[0]


@dataclass(frozen=True)
class PublishedPosition:
    """One published snapshot."""

    active: bool
    latitude: float | None = None
    longitude: float | None = None
    published_at: float = 0.0

    def to_record(self) -> dict:
        if not self.active:
            return {KEY_ACTIVE: False, KEY_LAT: 0, KEY_LNG: 0}
        return {
            KEY_ACTIVE: True,
            KEY_LAT: double_to_bits(self.latitude),
            KEY_LNG: double_to_bits(self.longitude),
        }

    @classmethod
    def from_record(cls, record: dict) -> PublishedPosition:
        if not record.get(KEY_ACTIVE, False):
            return cls(active=False)
        return cls(
            active=True,
            latitude=bits_to_double(int(record[KEY_LAT])),
            longitude=bits_to_double(int(record[KEY_LNG])),
        )


def _snapshot(active: bool, coordinate: Coordinate | None) -> PublishedPosition:
    if active and coordinate is None:
        raise ValueError("An active position needs a coordinate")
    if not active:
        return PublishedPosition(active=False, published_at=time.time())
    return PublishedPosition(
        active=True,
        latitude=coordinate.latitude,
        longitude=coordinate.longitude,
        published_at=time.time(),
    )


class PositionBroadcaster(Protocol):
    def publish(self, active: bool, coordinate: Coordinate | None) -> None: ...


class MemoryBroadcaster:
    """Keeps the latest snapshot in process.  Used by the HTTP status view."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._current = PublishedPosition(active=False)
        self._count = 0

    def publish(self, active: bool, coordinate: Coordinate | None) -> None:
        snap = _snapshot(active, coordinate)
        with self._lock:
            self._current = snap
            self._count += 1

    @property
    def current(self) -> PublishedPosition:
        with self._lock:
            return self._current

    @property
    def publish_count(self) -> int:
        return self._count


class FileBroadcaster:
    """Writes the record as JSON; readers use :func:`read_published`.

    The file is replaced atomically (temp file + rename) so a reader never
    sees a half-written record or an ``is_active`` that disagrees with the
    coordinate bits.
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path).expanduser()
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def publish(self, active: bool, coordinate: Coordinate | None) -> None:
        record = _snapshot(active, coordinate).to_record()
        payload = json.dumps(record)
        with self._lock:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(
                dir=self._path.parent, prefix=f".{self._path.name}.", suffix=".tmp",
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as fh:
                    fh.write(payload)
                os.chmod(tmp, 0o644)
                os.replace(tmp, self._path)
            except OSError:
                try:
                    os.unlink(tmp)
                except OSError:
                    pass
                raise


def read_published(path: str | Path) -> PublishedPosition:
    """Read a record written by FileBroadcaster.  Missing file = inactive."""
    p = Path(path).expanduser()
    try:
        record = json.loads(p.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return PublishedPosition(active=False)
    return PublishedPosition.from_record(record)


class MqttBroadcaster:
    """Publishes the record as a retained MQTT message.

    Topic: ``relocate/{device_id}/position``.  Retained so a subscriber that
    connects late immediately gets the current state.
    """

    def __init__(
        self,
        device_id: str = "device",
        broker_host: str = "localhost",
        broker_port: int = 1883,
        username: str = "",
        password: str = "",
        client: mqtt.Client | None = None,
    ) -> None:
        self._topic = f"relocate/{device_id}/position"
        self._broker_host = broker_host
        self._broker_port = broker_port
        self._username = username
        self._password = password
        self._client = client
        self._owns_client = client is None
        self._messages_published = 0
        self._last_error = ""

    @property
    def topic(self) -> str:
        return self._topic

    @property
    def stats(self) -> dict:
        return {
            "broker": f"{self._broker_host}:{self._broker_port}",
            "topic": self._topic,
            "messages_published": self._messages_published,
            "last_error": self._last_error,
        }

    def start(self) -> None:
        """Connect to the broker (no-op when a client was injected)."""
        if self._client is not None:
            return
        client = mqtt.Client(
            mqtt.CallbackAPIVersion.VERSION2,
            client_id=f"relocate-{int(time.time()) % 10000}",
        )
        if self._username:
            client.username_pw_set(self._username, self._password)
        try:
            client.connect(self._broker_host, self._broker_port, keepalive=60)
            client.loop_start()
        except OSError as e:
            self._last_error = str(e)
            logger.error(f"MQTT connection failed: {e}")
            return
        self._client = client
        logger.info(f"MQTT broadcaster connecting to {self._broker_host}:{self._broker_port}")

    def stop(self) -> None:
        if self._client is not None and self._owns_client:
            try:
                self._client.loop_stop()
                self._client.disconnect()
            except Exception as e:
                logger.warning(f"MQTT disconnect failed: {e}")
            self._client = None

    def publish(self, active: bool, coordinate: Coordinate | None) -> None:
        record = _snapshot(active, coordinate).to_record()
        if self._client is None:
            self._last_error = "not connected"
            return
        self._client.publish(self._topic, json.dumps(record), qos=1, retain=True)
        self._messages_published += 1


class FanoutBroadcaster:
    """Publishes to every child.  One failing child does not block the rest."""

    def __init__(self, children: Iterable[PositionBroadcaster]) -> None:
        self._children = list(children)

    @property
    def children(self) -> list[PositionBroadcaster]:
        return list(self._children)

    def publish(self, active: bool, coordinate: Coordinate | None) -> None:
        if active and coordinate is None:
            raise ValueError("An active position needs a coordinate")
        for child in self._children:
            try:
                child.publish(active, coordinate)
            except Exception as e:
                logger.warning(f"Broadcaster {type(child).__name__} failed: {e}")
