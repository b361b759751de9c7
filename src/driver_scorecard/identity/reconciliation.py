"""Curated name ⇄ tracking-token mapping used to unify the two driver feeds.

The table is hand-maintained data. It is loaded once and never mutated; no
fuzzy matching happens at lookup time, so a misspelled name simply has no
counterpart.
"""

from __future__ import annotations

import logging
from pathlib import Path
from types import MappingProxyType
from typing import Iterable, Mapping

from driver_scorecard.io.read import load_reconciliation_entries
from driver_scorecard.io.schema import FeedValidationError, ReconciliationEntry

LOGGER = logging.getLogger(__name__)

PLACEHOLDER_PREFIX = "ID:"


def is_placeholder(name: str | None) -> bool:
    """``ID:<partial-token>`` labels stand in for drivers whose name is unknown."""
    return bool(name) and str(name).strip().upper().startswith(PLACEHOLDER_PREFIX)


def is_human_name(name: str | None, token: str | None = None) -> bool:
    if not name or not str(name).strip():
        return False
    if is_placeholder(name):
        return False
    return token is None or str(name).strip() != str(token).strip()


class ReconciliationTable:
    def __init__(
        self,
        entries: Iterable[ReconciliationEntry],
        *,
        source: str = "reconciliation table",
    ) -> None:
        name_to_token: dict[str, str] = {}
        token_names: dict[str, list[str]] = {}
        issues: list[str] = []

        for entry in entries:
            name = entry.name.strip()
            token = entry.token.strip()
            existing = name_to_token.get(name)
            if existing is not None and existing != token:
                issues.append(f"name {name!r} maps to two tokens: {existing}, {token}")
                continue
            name_to_token[name] = token
            names = token_names.setdefault(token, [])
            if name not in names:
                names.append(name)

        if issues:
            raise FeedValidationError(source, issues)

        self._name_to_token: Mapping[str, str] = MappingProxyType(name_to_token)
        self._token_to_name: Mapping[str, str] = MappingProxyType(
            {token: self._preferred_name(names) for token, names in token_names.items()}
        )

    @staticmethod
    def _preferred_name(names: list[str]) -> str:
        for name in names:
            if not is_placeholder(name):
                return name
        return names[0]

    @property
    def name_to_token(self) -> Mapping[str, str]:
        return self._name_to_token

    @property
    def token_to_name(self) -> Mapping[str, str]:
        return self._token_to_name

    def __len__(self) -> int:
        return len(self._name_to_token)

    def resolve(self, token: str) -> str:
        """Display name for ``token``; the token itself when unmapped."""
        return self._token_to_name.get(str(token).strip(), token)

    def reverse_resolve(self, name: str) -> str | None:
        return self._name_to_token.get(str(name).strip())


def load_reconciliation_table(path: str | Path) -> ReconciliationTable:
    table = ReconciliationTable(load_reconciliation_entries(path), source=Path(path).name)
    LOGGER.info(
        "Loaded reconciliation table with %d names for %d tokens",
        len(table.name_to_token),
        len(table.token_to_name),
    )
    return table
