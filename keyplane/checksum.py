"""Integrity digest over a configuration snapshot.

The digest detects drift between a snapshot and the checksum recorded on it.
It is not cryptographic; collisions are acceptable.
"""

import msgspec

from keyplane.models import DeviceState

_MASK = 0xFFFFFFFF

_encoder = msgspec.json.Encoder(order="sorted")


def canonical_bytes(snapshot: DeviceState) -> bytes:
    # The recorded checksum is excluded so a snapshot's digest does not
    # depend on whatever value it carried before.
    return _encoder.encode(msgspec.structs.replace(snapshot, checksum=None))


def compute_checksum(snapshot: DeviceState) -> int:
    acc = 0
    for byte in canonical_bytes(snapshot):
        acc = (acc * 31 + byte) & _MASK
    return acc


def stamp_checksum(snapshot: DeviceState) -> DeviceState:
    return msgspec.structs.replace(snapshot, checksum=compute_checksum(snapshot))


def verify_checksum(snapshot: DeviceState) -> bool:
    if snapshot.checksum is None:
        return False
    return snapshot.checksum == compute_checksum(snapshot)
