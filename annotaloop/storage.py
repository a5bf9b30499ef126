from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from annotaloop.config import get_settings
from annotaloop.types import ReviewBundle


def cache_root() -> Path:
    root = get_settings().data_dir / 'cache'
    root.mkdir(parents=True, exist_ok=True)
    return root


def coordinate_cache_path(document_name: str) -> Path:
    token = ''.join(ch if ch.isalnum() or ch in '-_.' else '_' for ch in str(document_name or '').strip())
    if not token:
        raise ValueError('document_name is required')
    return cache_root() / f'{token}.coords.json'


def write_json_atomic(path: Path, payload: dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + '.tmp')
    tmp.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding='utf-8')
    tmp.replace(path)


def write_bytes_atomic(path: Path, content: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + '.tmp')
    tmp.write_bytes(content)
    tmp.replace(path)


def read_json(path: Path) -> dict[str, Any]:
    return json.loads(path.read_text(encoding='utf-8'))


def load_review_bundle(path: Path) -> ReviewBundle:
    return ReviewBundle.model_validate(read_json(path))
