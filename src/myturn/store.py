"""Key-value persistence for repos, repo states, blocks and settings.

Backends only move plain JSON-compatible values around; ``KeyValueStore``
translates them to and from domain records. Block lists are split into
items of at most ``MAX_ITEM_BYTES`` bytes because at least one deployment
target enforces a per-item quota of that size.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from dataclasses import replace
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, TypeVar

from .blocks import BlockSet
from .config import Settings
from .errors import ConfigurationError
from .models import CommentBlock, MyPrBlock, Repo, RepoState, ReviewRequestBlock
from .serialization import (
    comment_block_from_dict,
    my_pr_block_from_dict,
    repo_from_dict,
    repo_state_from_dict,
    review_request_block_from_dict,
    settings_from_dict,
    to_dict,
)

logger = logging.getLogger(__name__)

MAX_ITEM_BYTES = 4096

REPOS_KEY = "repos"
REPO_STATES_KEY = "repo_states"
SETTINGS_KEY = "settings"
LAST_CYCLE_DURATION_KEY = "last_cycle_duration_millis"
MY_PR_BLOCKS_KEY = "my_pr_blocks"
REVIEW_REQUEST_BLOCKS_KEY = "review_request_blocks"
COMMENT_BLOCKS_KEY = "comment_blocks"

R = TypeVar("R")


class BaseStore(ABC):
    """Pluggable key-value backend.

    Values are plain JSON-compatible structures. ``get`` returns ``None``
    for unknown keys and never raises for them.
    """

    @abstractmethod
    def get(self, key: str) -> Optional[Any]:
        """Return the value stored under ``key``, or ``None``."""

    @abstractmethod
    def update(self, values: Mapping[str, Any], removed: Iterable[str] = ()) -> None:
        """Write ``values`` and delete ``removed`` keys as one change."""

    def set(self, key: str, value: Any) -> None:
        self.update({key: value})

    def close(self) -> None:
        """Release any resources held by the store.

        Default is a no-op so callers can always call close() safely.
        """


class MemoryBackend(BaseStore):
    """In-process store, used by tests and one-off runs."""

    def __init__(self, initial: Optional[Mapping[str, Any]] = None) -> None:
        self._data: Dict[str, Any] = dict(initial or {})
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            return self._data.get(key)

    def update(self, values: Mapping[str, Any], removed: Iterable[str] = ()) -> None:
        with self._lock:
            self._data.update(values)
            for key in removed:
                self._data.pop(key, None)

    def keys(self) -> List[str]:
        with self._lock:
            return sorted(self._data)


class JsonFileBackend(BaseStore):
    """Store backed by a single JSON document on disk.

    Every change rewrites the document through a temporary file, so a crash
    never leaves a half-written state file behind.
    """

    def __init__(self, path: str) -> None:
        self._path = path
        self._lock = threading.Lock()
        self._data = self._load()

    def _load(self) -> Dict[str, Any]:
        if not os.path.exists(self._path):
            return {}
        try:
            with open(self._path, "r", encoding="utf-8") as handle:
                data = json.load(handle)
        except (OSError, ValueError) as exc:
            raise ConfigurationError(f"Could not read state file '{self._path}': {exc}") from exc
        if not isinstance(data, dict):
            raise ConfigurationError(f"State file '{self._path}' does not contain a JSON object.")
        return data

    def _flush(self) -> None:
        directory = os.path.dirname(self._path) or "."
        os.makedirs(directory, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(prefix=".state-", suffix=".json", dir=directory)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(self._data, handle, indent=2, sort_keys=True)
            os.replace(tmp_path, self._path)
        except Exception:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            return self._data.get(key)

    def update(self, values: Mapping[str, Any], removed: Iterable[str] = ()) -> None:
        with self._lock:
            self._data.update(values)
            for key in removed:
                self._data.pop(key, None)
            self._flush()


def encoded_size(value: Any) -> int:
    """Size in bytes of ``value`` serialized as compact JSON."""
    return len(json.dumps(value, separators=(",", ":")).encode("utf-8"))


def chunk_records(records: Sequence[Dict[str, Any]], max_bytes: int = MAX_ITEM_BYTES) -> List[List[Dict[str, Any]]]:
    """Split ``records`` into lists whose compact JSON fits in ``max_bytes``.

    Order is preserved. A record that alone exceeds ``max_bytes`` is stored
    in a chunk of its own.
    """
    chunks: List[List[Dict[str, Any]]] = []
    current: List[Dict[str, Any]] = []
    current_size = 2  # "[]"
    for record in records:
        record_size = encoded_size(record)
        separator = 1 if current else 0
        if current and current_size + separator + record_size > max_bytes:
            chunks.append(current)
            current, current_size, separator = [], 2, 0
        if record_size + 2 > max_bytes:
            logger.warning("Record exceeds the per-item quota", extra={"bytes": record_size, "max_bytes": max_bytes})
        current.append(record)
        current_size += separator + record_size
    if current:
        chunks.append(current)
    return chunks


def _chunk_key(list_key: str, index: int) -> str:
    return f"{list_key}.{index}"


class KeyValueStore:
    """Typed access to everything the sync engine persists."""

    def __init__(self, backend: BaseStore, max_item_bytes: int = MAX_ITEM_BYTES) -> None:
        self._backend = backend
        self._max_item_bytes = max_item_bytes

    @property
    def backend(self) -> BaseStore:
        return self._backend

    # Chunked lists

    def _read_chunked(self, list_key: str, parse: Callable[[Dict[str, Any]], R]) -> List[R]:
        count = int(self._backend.get(f"{list_key}.count") or 0)
        records: List[R] = []
        for index in range(count):
            for item in self._backend.get(_chunk_key(list_key, index)) or []:
                records.append(parse(item))
        return records

    def _write_chunked(self, list_key: str, records: Sequence[Any]) -> None:
        chunks = chunk_records([to_dict(record) for record in records], self._max_item_bytes)
        old_count = int(self._backend.get(f"{list_key}.count") or 0)
        values: Dict[str, Any] = {_chunk_key(list_key, index): chunk for index, chunk in enumerate(chunks)}
        values[f"{list_key}.count"] = len(chunks)
        stale = [_chunk_key(list_key, index) for index in range(len(chunks), old_count)]
        self._backend.update(values, removed=stale)
        logger.debug(
            "Stored block list",
            extra={"list": list_key, "records": len(records), "chunks": len(chunks)},
        )

    # Repos

    def get_repos(self) -> List[Repo]:
        return [repo_from_dict(item) for item in self._backend.get(REPOS_KEY) or []]

    def save_repos(self, repos: Sequence[Repo]) -> None:
        self._backend.set(REPOS_KEY, [to_dict(repo) for repo in repos])

    def add_repo(self, repo: Repo) -> None:
        """Add ``repo``, or re-enable monitoring if it is already known."""
        repos = self.get_repos()
        for index, existing in enumerate(repos):
            if existing.full_name.lower() == repo.full_name.lower():
                repos[index] = replace(existing, monitoring_enabled=True)
                break
        else:
            repos.append(repo)
        self.save_repos(repos)
        logger.info("Monitoring repository", extra={"repo": repo.full_name})

    def set_monitoring_enabled(self, full_name: str, enabled: bool) -> None:
        """Toggle monitoring of a known repo.

        Raises:
            ConfigurationError: If the repo was never added.
        """
        repos = self.get_repos()
        for index, existing in enumerate(repos):
            if existing.full_name.lower() == full_name.lower():
                repos[index] = replace(existing, monitoring_enabled=enabled)
                self.save_repos(repos)
                logger.info("Changed repository monitoring", extra={"repo": existing.full_name, "enabled": enabled})
                return
        raise ConfigurationError(f"Repository '{full_name}' is not monitored. Add it with --repo first.")

    # Repo states

    def get_repo_states(self) -> Dict[str, RepoState]:
        states = [repo_state_from_dict(item) for item in self._backend.get(REPO_STATES_KEY) or []]
        return {state.full_name: state for state in states}

    def save_repo_states(self, states: Mapping[str, RepoState]) -> None:
        logger.debug("Storing repo states", extra={"repos": len(states)})
        self._backend.set(REPO_STATES_KEY, [to_dict(state) for state in states.values()])

    # Blocks

    def get_my_pr_blocks(self) -> List[MyPrBlock]:
        return self._read_chunked(MY_PR_BLOCKS_KEY, my_pr_block_from_dict)

    def save_my_pr_blocks(self, blocks: Sequence[MyPrBlock]) -> None:
        self._write_chunked(MY_PR_BLOCKS_KEY, blocks)

    def get_review_request_blocks(self) -> List[ReviewRequestBlock]:
        return self._read_chunked(REVIEW_REQUEST_BLOCKS_KEY, review_request_block_from_dict)

    def save_review_request_blocks(self, blocks: Sequence[ReviewRequestBlock]) -> None:
        self._write_chunked(REVIEW_REQUEST_BLOCKS_KEY, blocks)

    def get_comment_blocks(self) -> List[CommentBlock]:
        return self._read_chunked(COMMENT_BLOCKS_KEY, comment_block_from_dict)

    def save_comment_blocks(self, blocks: Sequence[CommentBlock]) -> None:
        self._write_chunked(COMMENT_BLOCKS_KEY, blocks)

    def get_blocks(self) -> BlockSet:
        return BlockSet(
            my_pr_blocks=tuple(self.get_my_pr_blocks()),
            review_request_blocks=tuple(self.get_review_request_blocks()),
            comment_blocks=tuple(self.get_comment_blocks()),
        )

    def add_my_pr_block(self, block: MyPrBlock) -> None:
        self.save_my_pr_blocks(self.get_my_pr_blocks() + [block])

    def add_review_request_block(self, block: ReviewRequestBlock) -> None:
        self.save_review_request_blocks(self.get_review_request_blocks() + [block])

    def add_comment_block(self, block: CommentBlock) -> None:
        self.save_comment_blocks(self.get_comment_blocks() + [block])

    # Settings and cycle bookkeeping

    def get_settings(self) -> Settings:
        data = self._backend.get(SETTINGS_KEY)
        return settings_from_dict(data) if data else Settings()

    def save_settings(self, settings: Settings) -> None:
        self._backend.set(SETTINGS_KEY, to_dict(settings))

    def get_last_cycle_duration(self) -> Optional[int]:
        value = self._backend.get(LAST_CYCLE_DURATION_KEY)
        return int(value) if value is not None else None

    def save_last_cycle_duration(self, duration_millis: int) -> None:
        self._backend.set(LAST_CYCLE_DURATION_KEY, int(duration_millis))
