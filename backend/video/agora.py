"""Agora RTC token issuance for booking video calls.

Tokens are built server-side so the app certificate never reaches clients.
"""

import time

from agora_token_builder import RtcTokenBuilder

from backend.core import config

PUBLISHER_ROLE = 1
SUBSCRIBER_ROLE = 2
MAX_UID = 2147483647


class AgoraNotConfiguredError(RuntimeError):
    pass


def generate_channel_name(booking_id: int) -> str:
    return f'booking-{booking_id}'


def generate_uid(user_id: int | str) -> int:
    """Stable 31-bit UID for a user; the same user always joins with the same UID."""
    value = 0
    for character in str(user_id):
        value = ((value << 5) - value + ord(character)) & 0xFFFFFFFF
    if value >= 2 ** 31:
        value -= 2 ** 32
    return abs(value) % MAX_UID


def generate_rtc_token(
    channel_name: str,
    uid: int,
    role: int = PUBLISHER_ROLE,
    expiration_seconds: int | None = None,
) -> str:
    if not config.AGORA_APP_ID or not config.AGORA_APP_CERTIFICATE:
        raise AgoraNotConfiguredError(
            'Agora credentials not configured. Set AGORA_APP_ID and AGORA_APP_CERTIFICATE.'
        )

    expires_at = int(time.time()) + (expiration_seconds or config.AGORA_TOKEN_TTL_SECONDS)
    return RtcTokenBuilder.buildTokenWithUid(
        config.AGORA_APP_ID,
        config.AGORA_APP_CERTIFICATE,
        channel_name,
        uid,
        role,
        expires_at,
    )
