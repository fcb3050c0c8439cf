"""
Byte codec for the persisted subscription blob.

An empty or absent blob means no subscriptions exist yet; anything else must
be the JSON envelope written by encode_subscriptions.
"""

from __future__ import annotations

import pydantic

from .errors import DecodeError
from .models import Subscriptions


def decode_subscriptions(data: bytes | None) -> Subscriptions:
    if not data:
        return Subscriptions()
    try:
        return Subscriptions.model_validate_json(data)
    except pydantic.ValidationError as exc:
        raise DecodeError("unable to decode subscriptions") from exc


def encode_subscriptions(subs: Subscriptions) -> bytes:
    return subs.model_dump_json(by_alias=True).encode("utf-8")
