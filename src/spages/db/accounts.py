"""Read-only access to source-control accounts and their clone tokens."""

from __future__ import annotations

import json
import logging
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError

logger = logging.getLogger(__name__)


class Account(BaseModel):
    """One linked source-control account as stored by the credential service."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str
    login: str | None = None
    access_token: str | None = Field(default=None, alias="accessToken")


class AccountStore:
    """Look up accounts in ``github-accounts.json``.

    The file maps an arbitrary key to an account record; lookups match on the
    record's ``id`` field rather than the key.
    """

    def __init__(self, path: Path) -> None:
        self._path = path

    def _read(self) -> list[Account]:
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return []
        except json.JSONDecodeError:
            logger.error("Corrupt accounts file ignored: %s", self._path)
            return []
        if not isinstance(raw, dict):
            return []
        accounts: list[Account] = []
        for value in raw.values():
            try:
                accounts.append(Account.model_validate(value))
            except ValidationError:
                logger.warning("Skipping malformed account record in %s", self._path)
        return accounts

    def get(self, account_id: str | None) -> Account | None:
        if account_id is None:
            return None
        for account in self._read():
            if account.id == account_id:
                return account
        return None

    def token_for(self, account_id: str | None) -> str | None:
        account = self.get(account_id)
        return account.access_token if account is not None else None
