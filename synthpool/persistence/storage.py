"""Pool state snapshot storage."""

import json
import logging
import re
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, List, Optional

from config.settings import Settings, get_settings
from synthpool.protocol.state import PoolState, StateStore

logger = logging.getLogger(__name__)


class DecimalEncoder(json.JSONEncoder):
    """JSON encoder that handles Decimal types."""

    def default(self, obj):
        if isinstance(obj, Decimal):
            return str(obj)
        if isinstance(obj, datetime):
            return obj.isoformat()
        return super().default(obj)


class PoolStorage:
    """
    Persistent storage for pool state snapshots.

    Uses JSON files for simplicity and human-readability.
    Directory structure:
        storage_dir/
            snapshots/
                {name}.json
    """

    def __init__(self, storage_dir: Optional[Path] = None, settings: Optional[Settings] = None):
        """
        Initialize storage.

        Args:
            storage_dir: Base directory for storage (default: settings.storage_dir)
            settings: Settings consulted when no directory is given
        """
        if storage_dir is None:
            storage_dir = (settings or get_settings()).ensure_storage_dir()

        self.storage_dir = Path(storage_dir)
        self.snapshots_dir = self.storage_dir / "snapshots"
        self.snapshots_dir.mkdir(parents=True, exist_ok=True)

    def save_snapshot(self, store: StateStore, name: str) -> Path:
        """
        Save the committed state of a store.

        Args:
            store: State store to snapshot
            name: Snapshot name (sanitized into the file name)

        Returns:
            Path of the written file
        """
        file_path = self._path(name)

        data = {
            "_name": name,
            "_version": store.version,
            "_saved_at": datetime.now(timezone.utc).isoformat(),
            "state": store.snapshot().to_dict(),
        }

        with open(file_path, "w") as f:
            json.dump(data, f, cls=DecimalEncoder, indent=2)

        logger.info(f"Saved snapshot: {name} (version {store.version})")
        return file_path

    def load_snapshot(self, name: str) -> Optional[StateStore]:
        """
        Load a snapshot into a new store.

        Returns:
            StateStore at the saved version, or None if not found
        """
        file_path = self._path(name)

        if not file_path.exists():
            logger.warning(f"Snapshot not found: {name}")
            return None

        with open(file_path, "r") as f:
            data = json.load(f)

        state = PoolState.from_dict(data["state"])
        return StateStore(state, version=int(data.get("_version", 0)))

    def list_snapshots(self) -> List[Dict[str, Any]]:
        """
        List all saved snapshots, newest first.

        Returns:
            List of snapshot summaries (name, version, cycle, saved_at)
        """
        snapshots = []

        for file_path in self.snapshots_dir.glob("*.json"):
            with open(file_path, "r") as f:
                data = json.load(f)

            cycle = data.get("state", {}).get("cycle", {})
            snapshots.append({
                "name": data.get("_name", file_path.stem),
                "version": data.get("_version"),
                "cycle_index": cycle.get("cycle_index"),
                "phase": cycle.get("phase"),
                "saved_at": data.get("_saved_at"),
            })

        snapshots.sort(key=lambda x: x.get("saved_at") or "", reverse=True)
        return snapshots

    def delete_snapshot(self, name: str) -> bool:
        """
        Delete a snapshot.

        Returns:
            True if deleted, False if not found
        """
        file_path = self._path(name)

        if file_path.exists():
            file_path.unlink()
            logger.info(f"Deleted snapshot: {name}")
            return True

        return False

    def _path(self, name: str) -> Path:
        safe_name = re.sub(r"[^A-Za-z0-9_.-]+", "_", name).strip("._") or "snapshot"
        return self.snapshots_dir / f"{safe_name}.json"
