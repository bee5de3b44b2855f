"""
stakepool/storage.py

Persistence for engine state.

Provides two-tier storage:
1. Memory cache - Fast access
2. Local disk - Survives restarts

StateStore saves and restores complete StakingManager snapshots (rate
table, accounts, pool counters) so they outlive the process.
"""

import os
import json
import time
import logging
import hashlib
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable, Dict, Optional

from .ledger import TokenLedger
from .protocol.staking import StakingManager

logger = logging.getLogger("stakepool.storage")


# ============================================================================
# CONSTANTS
# ============================================================================

DEFAULT_STORAGE_DIR = Path.home() / ".stakepool" / "storage"
STATE_KEY_PREFIX = "stakepool:state:"
SNAPSHOT_VERSION = 1


# ============================================================================
# STORAGE BACKENDS
# ============================================================================

class StorageBackend(ABC):
    """Abstract base class for storage backends."""

    @abstractmethod
    async def get(self, key: str) -> Optional[bytes]:
        """Get a value by key."""
        pass

    @abstractmethod
    async def put(self, key: str, value: bytes) -> bool:
        """Store a value."""
        pass

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Delete a value."""
        pass


class MemoryBackend(StorageBackend):
    """In-memory storage backend."""

    def __init__(self):
        self._data: Dict[str, bytes] = {}

    async def get(self, key: str) -> Optional[bytes]:
        return self._data.get(key)

    async def put(self, key: str, value: bytes) -> bool:
        self._data[key] = value
        return True

    async def delete(self, key: str) -> bool:
        return self._data.pop(key, None) is not None


class FileBackend(StorageBackend):
    """
    One file per key under storage_dir.

    Writes land in a sibling temp file first and are moved into place with
    os.replace, so a reader sees either the previous snapshot or the new one.
    """

    def __init__(self, storage_dir: Path = None):
        self.storage_dir = Path(storage_dir) if storage_dir else DEFAULT_STORAGE_DIR
        self.storage_dir.mkdir(parents=True, exist_ok=True)

    def _key_to_path(self, key: str) -> Path:
        """Convert key to file path."""
        hash_name = hashlib.sha256(key.encode()).hexdigest()[:32]
        return self.storage_dir / f"{hash_name}.json"

    async def get(self, key: str) -> Optional[bytes]:
        path = self._key_to_path(key)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.error(f"Failed to read {key} from {path}: {e}")
            return None

    async def put(self, key: str, value: bytes) -> bool:
        path = self._key_to_path(key)
        tmp_path = path.with_suffix(".tmp")
        try:
            with open(tmp_path, "wb") as f:
                f.write(value)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, path)
            logger.debug(f"Wrote {len(value)} bytes for {key} to {path}")
            return True
        except OSError as e:
            logger.error(f"Failed to write {key} to {path}: {e}")
            return False

    async def delete(self, key: str) -> bool:
        path = self._key_to_path(key)
        try:
            path.unlink()
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            logger.error(f"Failed to delete {key}: {e}")
            return False


# ============================================================================
# STATE STORE
# ============================================================================

class StateStore:
    """
    Saves and loads StakingManager snapshots.

    Read order: Memory -> Disk
    Write order: Memory + Disk

    Usage:
        store = StateStore("mainnet", backend=FileBackend(Path("./state")))
        await store.save(manager)

        # After a restart
        manager = await store.load(ledger)
    """

    def __init__(self, namespace: str = "default", backend: StorageBackend = None):
        self.namespace = namespace
        self._memory = MemoryBackend()
        self._disk = backend

    @property
    def key(self) -> str:
        return f"{STATE_KEY_PREFIX}{self.namespace}"

    @staticmethod
    def encode(manager: StakingManager) -> bytes:
        snapshot = {
            "version": SNAPSHOT_VERSION,
            "saved_at": int(time.time()),
            "state": manager.to_dict(),
        }
        return json.dumps(snapshot, sort_keys=True).encode()

    @staticmethod
    def decode(
        data: bytes,
        ledger: TokenLedger,
        clock: Optional[Callable[[], int]] = None,
    ) -> StakingManager:
        snapshot = json.loads(data.decode())
        version = snapshot.get("version")
        if version != SNAPSHOT_VERSION:
            raise ValueError(f"Unsupported snapshot version: {version}")
        return StakingManager.from_dict(snapshot["state"], ledger, clock=clock)

    async def save(self, manager: StakingManager) -> bool:
        """
        Persist a snapshot of manager.

        Returns:
            True if every configured tier stored it
        """
        data = self.encode(manager)
        ok = await self._memory.put(self.key, data)
        if self._disk is not None:
            ok = await self._disk.put(self.key, data) and ok
        if not ok:
            logger.warning(f"Snapshot for {self.namespace} not fully persisted")
        return ok

    async def _read(self) -> Optional[bytes]:
        data = await self._memory.get(self.key)
        if data is None and self._disk is not None:
            data = await self._disk.get(self.key)
            if data is not None:
                # Repopulate memory cache
                await self._memory.put(self.key, data)
        return data

    async def load_raw(self) -> Optional[dict]:
        """Load the stored snapshot as a dict, without rebuilding a manager."""
        data = await self._read()
        if data is None:
            return None
        return json.loads(data.decode())

    async def load(
        self,
        ledger: TokenLedger,
        clock: Optional[Callable[[], int]] = None,
    ) -> Optional[StakingManager]:
        """
        Rebuild the stored manager.

        Returns:
            StakingManager, or None if nothing was stored
        """
        data = await self._read()
        if data is None:
            return None
        manager = self.decode(data, ledger, clock=clock)
        logger.info(f"Loaded state for {self.namespace}: {len(manager.accounts())} account(s)")
        return manager

    async def clear(self) -> bool:
        mem_ok = await self._memory.delete(self.key)
        disk_ok = await self._disk.delete(self.key) if self._disk is not None else False
        return mem_ok or disk_ok
