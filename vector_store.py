"""
Durable key/value stores for embedding vectors.

The acquirer consults a store after an in-memory cache miss and writes
freshly generated vectors back to it. Store failures are logged and reported
through the return value of ``store``; they never abort a resolution.
"""
import os
import json
import hashlib
import logging
import threading
from pathlib import Path
from typing import Dict, Optional, Union

import numpy as np

logger = logging.getLogger("wordmath.store")


def _normalize_key(key: str) -> str:
    return key.strip().lower()


class VectorStore:
    """Interface for a durable vector store."""

    def lookup(self, key: str) -> Optional[np.ndarray]:
        raise NotImplementedError

    def store(self, key: str, vector) -> bool:
        raise NotImplementedError

    def __len__(self) -> int:
        raise NotImplementedError


class InMemoryVectorStore(VectorStore):
    """Process-local store, mainly useful for tests and single-run CLIs."""

    def __init__(self):
        self._data: Dict[str, np.ndarray] = {}
        self._lock = threading.Lock()

    def lookup(self, key: str) -> Optional[np.ndarray]:
        with self._lock:
            vector = self._data.get(_normalize_key(key))
            return None if vector is None else vector.copy()

    def store(self, key: str, vector) -> bool:
        with self._lock:
            self._data[_normalize_key(key)] = np.array(vector, dtype=np.float64).reshape(-1)
        return True

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)


class DiskVectorStore(VectorStore):
    """Stores each vector as a ``.npy`` file under *directory*.

    File names are md5 hashes of the normalised key; ``_index.json`` maps the
    hashes back to the original keys so the store can be inspected.
    """

    INDEX_FILE = "_index.json"

    def __init__(self, directory: Union[str, Path]):
        self.directory = Path(os.path.expanduser(str(directory)))
        self.directory.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()
        self._index: Dict[str, str] = {}
        self._load_index()

    def _load_index(self) -> None:
        index_file = self.directory / self.INDEX_FILE
        if index_file.exists():
            try:
                with open(index_file, 'r', encoding='utf-8') as f:
                    self._index = json.load(f)
            except (json.JSONDecodeError, OSError) as e:
                logger.warning(f"Could not read store index {index_file}: {e}")
                self._index = {}

    def _save_index(self) -> None:
        index_file = self.directory / self.INDEX_FILE
        with open(index_file, 'w', encoding='utf-8') as f:
            json.dump(self._index, f, ensure_ascii=False, indent=2)

    def _path_for(self, key: str) -> Path:
        key_hash = hashlib.md5(key.encode('utf-8')).hexdigest()
        return self.directory / f"vec_{key_hash}.npy"

    def lookup(self, key: str) -> Optional[np.ndarray]:
        path = self._path_for(_normalize_key(key))
        with self._lock:
            if not path.exists():
                return None
            try:
                return np.load(path, allow_pickle=False)
            except (OSError, ValueError) as e:
                logger.warning(f"Unreadable vector file {path.name}: {e}")
                return None

    def store(self, key: str, vector) -> bool:
        norm_key = _normalize_key(key)
        path = self._path_for(norm_key)
        with self._lock:
            try:
                np.save(path, np.array(vector, dtype=np.float64).reshape(-1), allow_pickle=False)
                self._index[path.stem] = norm_key
                self._save_index()
                return True
            except OSError as e:
                logger.error(f"Failed to persist vector for {norm_key!r}: {e}")
                return False

    def __len__(self) -> int:
        with self._lock:
            return len(self._index)


def create_store(config) -> VectorStore:
    """Build the configured store backend (``memory`` or ``disk``)."""
    backend = config.get("store.backend", "memory")
    if backend == "disk":
        return DiskVectorStore(config.get("store.directory", "~/.wordmath/vectors"))
    if backend != "memory":
        logger.warning(f"Unknown store backend {backend!r}, using in-memory store")
    return InMemoryVectorStore()
