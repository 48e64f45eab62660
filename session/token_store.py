from __future__ import annotations

import json
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path

from session.models import ACCESS_TOKEN_KEY, REFRESH_TOKEN_KEY, TokenPair


class TokenStoreError(RuntimeError):
    pass


class TokenStore(ABC):
    """Holds the current access/refresh pair; both tokens change together."""

    @abstractmethod
    async def get(self) -> TokenPair | None:
        raise NotImplementedError

    @abstractmethod
    async def set(self, pair: TokenPair) -> None:
        raise NotImplementedError

    @abstractmethod
    async def clear(self) -> None:
        raise NotImplementedError


class MemoryTokenStore(TokenStore):
    def __init__(self, pair: TokenPair | None = None) -> None:
        self._values: dict[str, str] = {}
        if pair is not None:
            self._values.update(pair.to_payload())

    async def get(self) -> TokenPair | None:
        return _pair_from_values(self._values)

    async def set(self, pair: TokenPair) -> None:
        self._values = pair.to_payload()

    async def clear(self) -> None:
        self._values = {}


class FileTokenStore(TokenStore):
    def __init__(self, path: str | Path = ".ticketly_tokens.json") -> None:
        self._path = Path(path)

    async def get(self) -> TokenPair | None:
        return _pair_from_values(self._read_all())

    async def set(self, pair: TokenPair) -> None:
        values = self._read_all()
        values.update(pair.to_payload())
        self._write_all(values)

    async def clear(self) -> None:
        values = self._read_all()
        values.pop(ACCESS_TOKEN_KEY, None)
        values.pop(REFRESH_TOKEN_KEY, None)
        self._write_all(values)

    def _read_all(self) -> dict[str, str]:
        if not self._path.exists():
            return {}

        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except ValueError as error:
            raise TokenStoreError(f"Token store file is not valid JSON: {self._path}") from error
        if not isinstance(raw, dict):
            raise TokenStoreError("Token store file is invalid; expected top-level JSON object.")
        return raw

    def _write_all(self, payload: dict[str, str]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)

        fd, tmp_name = tempfile.mkstemp(
            prefix=f"{self._path.name}.",
            suffix=".tmp",
            dir=self._path.parent,
        )
        tmp_path = Path(tmp_name)

        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(payload, handle, indent=2, sort_keys=True)
            os.replace(tmp_path, self._path)
        finally:
            if tmp_path.exists():
                tmp_path.unlink()


def _pair_from_values(values: dict[str, str]) -> TokenPair | None:
    # A half-written pair is treated as no session at all.
    try:
        return TokenPair.from_payload(values)
    except ValueError:
        return None
