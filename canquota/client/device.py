"""Device identifier for callers of the rate-limit endpoint.

The id is derived from host and runtime signals and cached in the local
state file so repeat runs reuse it. It is spoofable and the server treats
it as a hint only.
"""

from __future__ import annotations

import hashlib
import locale
import platform
import secrets
import time
import uuid

from .state import LocalStateStore

DEVICE_ID_KEY = "device_id_v2"

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


def to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(_BASE36[remainder])
    return "".join(reversed(digits))


def _signals() -> list[str]:
    return [
        platform.system(),
        platform.release(),
        platform.machine(),
        platform.processor(),
        platform.node(),
        platform.python_implementation(),
        time.tzname[0],
        str(locale.getlocale()[0] or ""),
        str(uuid.getnode()),
    ]


def generate_fingerprint() -> str:
    """Hash host signals into a short base-36 token."""

    digest = hashlib.sha256("|".join(_signals()).encode("utf-8")).digest()
    return to_base36(int.from_bytes(digest[:8], "big"))


def get_device_id(store: LocalStateStore) -> str:
    device_id = store.get(DEVICE_ID_KEY)
    if isinstance(device_id, str) and device_id:
        return device_id
    device_id = "_".join(
        [
            generate_fingerprint(),
            to_base36(int(time.time() * 1000)),
            secrets.token_hex(3),
        ]
    )
    store.set(DEVICE_ID_KEY, device_id)
    return device_id
