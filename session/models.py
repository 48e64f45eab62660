from __future__ import annotations

import enum
from dataclasses import dataclass

ACCESS_TOKEN_KEY = "accessToken"
REFRESH_TOKEN_KEY = "refreshToken"


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str

    @classmethod
    def from_payload(cls, payload: dict) -> "TokenPair":
        access_token = payload.get(ACCESS_TOKEN_KEY)
        refresh_token = payload.get(REFRESH_TOKEN_KEY)

        if not isinstance(access_token, str) or not access_token:
            raise ValueError(f"Token payload missing {ACCESS_TOKEN_KEY}.")
        if not isinstance(refresh_token, str) or not refresh_token:
            raise ValueError(f"Token payload missing {REFRESH_TOKEN_KEY}.")

        return cls(access_token=access_token, refresh_token=refresh_token)

    def to_payload(self) -> dict[str, str]:
        return {
            ACCESS_TOKEN_KEY: self.access_token,
            REFRESH_TOKEN_KEY: self.refresh_token,
        }


class RefreshState(enum.Enum):
    IDLE = "idle"
    REFRESHING = "refreshing"
