"""Hierarchical document stores addressed by slash-separated paths.

A store holds a JSON tree. ``get(path)`` returns the whole subtree under
*path* (or ``None``); ``set(path, value)`` replaces the record at *path*
wholesale, and ``set(path, None)`` removes it. There are no partial-field
updates and no transactions: callers re-read, merge and rewrite.
"""

from __future__ import annotations

import copy
import json
from typing import Any, Protocol

import gspread
from google.oauth2.service_account import Credentials
from loguru import logger

# Scopes required for reading and writing Sheets and Drive metadata.
_SCOPES: list[str] = [
    "https://www.googleapis.com/auth/spreadsheets",
    "https://www.googleapis.com/auth/drive.readonly",
]

_SHEET_DOCUMENTS = "documents"
_HEADERS = ["path", "value"]


class DocumentStore(Protocol):
    """What the repository needs from a backing store."""

    def get(self, path: str) -> Any: ...

    def set(self, path: str, value: Any) -> None: ...


def split_path(path: str) -> list[str]:
    parts = [part for part in path.strip("/").split("/") if part]
    if not parts:
        raise ValueError("document path must not be empty")
    return parts


class InMemoryDocumentStore:
    """Document store backed by a nested dict; used for tests and local runs."""

    def __init__(self, data: dict[str, Any] | None = None) -> None:
        self._root: dict[str, Any] = copy.deepcopy(data) if data else {}

    def get(self, path: str) -> Any:
        node: Any = self._root
        for part in split_path(path):
            if not isinstance(node, dict) or part not in node:
                return None
            node = node[part]
        return copy.deepcopy(node)

    def set(self, path: str, value: Any) -> None:
        *parents, leaf = split_path(path)
        node = self._root
        for part in parents:
            child = node.get(part)
            if not isinstance(child, dict):
                if value is None:
                    return
                child = node[part] = {}
            node = child

        if value is None:
            node.pop(leaf, None)
        else:
            node[leaf] = copy.deepcopy(value)


class SheetsDocumentStore:
    """Document store kept in one Google Sheets tab.

    Every ``set`` is stored as a single ``[path, json]`` row, so a record
    written at ``users/u1/stocks/AAPL`` occupies exactly one row. Reads at a
    parent path assemble the subtree from the rows beneath it; reads at a
    deeper path descend into the JSON of the row that contains it.

    Parameters
    ----------
    spreadsheet_id:
        The Google Spreadsheet ID found in its URL.
    service_account_json_path:
        Path to the service-account credentials JSON downloaded from Google Cloud Console.
    """

    def __init__(self, spreadsheet_id: str, service_account_json_path: str) -> None:
        logger.info(
            "Authenticating with Google Sheets using service account: {}",
            service_account_json_path,
        )
        credentials = Credentials.from_service_account_file(
            service_account_json_path,
            scopes=_SCOPES,
        )
        client = gspread.authorize(credentials)  # type: ignore[no-untyped-call]
        spreadsheet = client.open_by_key(spreadsheet_id)
        logger.info("Opened spreadsheet: {}", spreadsheet.title)
        self._worksheet = self._get_or_create_worksheet(spreadsheet)

    @classmethod
    def from_worksheet(cls, worksheet: gspread.Worksheet) -> SheetsDocumentStore:
        """Build a store around an already opened worksheet."""
        store = cls.__new__(cls)
        store._worksheet = worksheet
        return store

    # ------------------------------------------------------------------
    # DocumentStore
    # ------------------------------------------------------------------

    def get(self, path: str) -> Any:
        parts = split_path(path)
        key = "/".join(parts)
        rows = self._rows()

        for row_path, raw in rows:
            if row_path == key:
                return json.loads(raw)

        # A record written higher up the tree that contains *path*.
        for row_path, raw in rows:
            if key.startswith(row_path + "/"):
                node: Any = json.loads(raw)
                for part in key[len(row_path) + 1 :].split("/"):
                    if not isinstance(node, dict) or part not in node:
                        return None
                    node = node[part]
                return node

        subtree: dict[str, Any] = {}
        prefix = key + "/"
        for row_path, raw in rows:
            if not row_path.startswith(prefix):
                continue
            *parents, leaf = row_path[len(prefix) :].split("/")
            node = subtree
            for part in parents:
                node = node.setdefault(part, {})
            node[leaf] = json.loads(raw)

        return subtree or None

    def set(self, path: str, value: Any) -> None:
        key = "/".join(split_path(path))
        prefix = key + "/"
        rows = self._rows()

        # Row 1 is the header; delete bottom-up so indices stay valid.
        stale = [idx for idx, (row_path, _) in enumerate(rows, start=2) if row_path == key or row_path.startswith(prefix)]
        for idx in reversed(stale):
            self._worksheet.delete_rows(idx)
        if stale:
            logger.debug("Removed {} row(s) under '{}'", len(stale), key)

        if value is None:
            return

        self._worksheet.append_row([key, json.dumps(value, ensure_ascii=False)], value_input_option="RAW")
        logger.debug("Wrote document '{}'", key)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _rows(self) -> list[tuple[str, str]]:
        values: list[list[str]] = self._worksheet.get_all_values()
        return [(row[0], row[1]) for row in values[1:] if len(row) >= 2 and row[0]]

    @staticmethod
    def _get_or_create_worksheet(spreadsheet: gspread.Spreadsheet) -> gspread.Worksheet:
        """Return the documents worksheet, creating it with a header row if absent."""
        try:
            return spreadsheet.worksheet(_SHEET_DOCUMENTS)
        except gspread.WorksheetNotFound:
            logger.info("Sheet '{}' not found — creating it now", _SHEET_DOCUMENTS)
            worksheet: gspread.Worksheet = spreadsheet.add_worksheet(
                title=_SHEET_DOCUMENTS, rows=1000, cols=len(_HEADERS)
            )
            worksheet.append_row(_HEADERS, value_input_option="RAW")
            return worksheet
