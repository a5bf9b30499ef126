from __future__ import annotations

import hashlib
import logging
import threading
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

from annotaloop.storage import read_json, write_json_atomic
from annotaloop.types import AnnotationColor, AnnotationCoord


logger = logging.getLogger(__name__)


def document_version(data: bytes) -> str:
    return hashlib.sha256(bytes(data)).hexdigest()


class CachedGeometry(BaseModel):
    coords: list[AnnotationCoord] = Field(default_factory=list)
    color: AnnotationColor | None = None


class CoordinateCache:
    """Anchoring results keyed by ``(document_version, annotation_id)``.

    Editing the document changes its version, so stale entries are never
    returned; ``invalidate`` drops them in one call.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._entries: dict[tuple[str, str], CachedGeometry] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get(self, version: str, annotation_id: str) -> CachedGeometry | None:
        with self._lock:
            return self._entries.get((version, annotation_id))

    def put(self, version: str, annotation_id: str, geometry: CachedGeometry) -> None:
        with self._lock:
            self._entries[(version, annotation_id)] = geometry

    def invalidate(self, version: str) -> int:
        with self._lock:
            stale = [key for key in self._entries if key[0] == version]
            for key in stale:
                del self._entries[key]
        return len(stale)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def to_payload(self) -> dict[str, Any]:
        with self._lock:
            rows = [
                {
                    'document_version': version,
                    'annotation_id': annotation_id,
                    **geometry.model_dump(mode='json', by_alias=True),
                }
                for (version, annotation_id), geometry in self._entries.items()
            ]
        return {'entries': rows}

    def save(self, path: Path) -> None:
        write_json_atomic(path, self.to_payload())

    @classmethod
    def load(cls, path: Path) -> 'CoordinateCache':
        cache = cls()
        if not path.exists():
            return cache
        try:
            payload = read_json(path)
        except (OSError, ValueError) as exc:
            logger.warning('Ignoring unreadable coordinate cache %s: %s', path, exc)
            return cache
        if not isinstance(payload, dict):
            logger.warning('Ignoring coordinate cache %s: top level is not an object', path)
            return cache
        for row in payload.get('entries') or []:
            if not isinstance(row, dict):
                continue
            version = str(row.get('document_version') or '')
            annotation_id = str(row.get('annotation_id') or '')
            if not version or not annotation_id:
                continue
            try:
                geometry = CachedGeometry.model_validate(row)
            except ValueError as exc:
                logger.warning('Dropping unreadable cache entry %s: %s', annotation_id, exc)
                continue
            cache.put(version, annotation_id, geometry)
        return cache
