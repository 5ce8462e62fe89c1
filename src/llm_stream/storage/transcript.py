from __future__ import annotations
import json
import datetime as dt
from pathlib import Path
from typing import Any, Dict, List, Optional, Literal

Role = Literal['system', 'user', 'assistant']
Status = Literal['complete', 'partial']


def _now() -> str:
    return dt.datetime.now(dt.timezone.utc).isoformat()


def _new_id() -> str:
    return dt.datetime.now(dt.timezone.utc).strftime('%Y%m%d-%H%M%S-%f')


class Transcript:
    """
    Conversation cache.
    - If root_dir is provided: file-backed JSONL at <root_dir>/<conversation_id>.jsonl
    - If root_dir is None: in-memory only (--no-cache)
    - First record is a header (id, api, model, title, description, parent)
    - If a file already exists for conversation_id, it resumes from it
    """

    def __init__(
        self,
        conversation_id: Optional[str] = None,
        root_dir: Optional[Path] = None,
        header_meta: Optional[Dict[str, Any]] = None,
    ):
        self._root_dir = Path(root_dir) if root_dir else None
        self._id = conversation_id or _new_id()
        self._header: Dict[str, Any] = {'id': self._id, **(header_meta or {})}
        self._messages: List[Dict[str, str]] = []
        self._path: Optional[Path] = None

        if self._root_dir:
            self._root_dir.mkdir(parents=True, exist_ok=True)
            self._path = self._root_dir / f'{self._id}.jsonl'
            if self._path.exists() and self._path.stat().st_size > 0:
                self._load_from_file()

    @property
    def conversation_id(self) -> str:
        return self._id

    @property
    def header(self) -> Dict[str, Any]:
        return dict(self._header)

    @property
    def path(self) -> Optional[Path]:
        return self._path

    @property
    def messages(self) -> List[Dict[str, str]]:
        # Return a shallow copy to avoid accidental mutation
        return list(self._messages)

    def append_message(self, role: Role, content: str, status: Status = 'complete') -> None:
        if self._path is not None:
            rec = {'type': 'message', 'ts': _now(), 'role': role, 'content': content, 'status': status}
            self._ensure_header()
            with self._path.open('a', encoding='utf-8') as f:
                f.write(json.dumps(rec, ensure_ascii=False) + '\n')
        self._messages.append({'role': role, 'content': content})

    def fork(self, root_dir: Optional[Path] = None, header_meta: Optional[Dict[str, Any]] = None) -> "Transcript":
        """New conversation holding a copy of this one's messages, parented to it."""
        meta = {k: v for k, v in self._header.items() if k not in ('id', 'ts')}
        meta.update(header_meta or {})
        meta['parent'] = self._id
        child = Transcript(root_dir=root_dir if root_dir is not None else self._root_dir, header_meta=meta)
        for m in self._messages:
            child.append_message(m['role'], m['content'])
        return child

    # Internal helpers

    def _ensure_header(self) -> None:
        if self._path.exists() and self._path.stat().st_size > 0:
            return
        header = {'type': 'header', 'ts': _now(), **self._header}
        with self._path.open('a', encoding='utf-8') as f:
            f.write(json.dumps(header, ensure_ascii=False) + '\n')

    def _load_from_file(self) -> None:
        self._messages = []
        with self._path.open('r', encoding='utf-8') as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    obj = json.loads(line)
                except json.JSONDecodeError:
                    continue
                if obj.get('type') == 'header':
                    self._header = {k: v for k, v in obj.items() if k != 'type'}
                    self._header['id'] = self._id
                elif obj.get('type') == 'message' and obj.get('role') in ('system', 'user', 'assistant'):
                    self._messages.append({'role': obj['role'], 'content': obj.get('content', '')})


def _read_header(path: Path) -> Optional[Dict[str, Any]]:
    with path.open('r', encoding='utf-8') as f:
        first = f.readline().strip()
    if not first:
        return None
    try:
        obj = json.loads(first)
    except json.JSONDecodeError:
        return None
    if obj.get('type') != 'header':
        return None
    return {k: v for k, v in obj.items() if k != 'type'}


def list_transcripts(root_dir: Path) -> List[Dict[str, Any]]:
    """Headers of every cached conversation, newest first."""
    root = Path(root_dir)
    if not root.is_dir():
        return []
    headers = []
    for path in root.glob('*.jsonl'):
        header = _read_header(path)
        if header is not None:
            header.setdefault('id', path.stem)
            headers.append(header)
    return sorted(headers, key=lambda h: h.get('ts', ''), reverse=True)


def last_transcript_id(root_dir: Path) -> Optional[str]:
    headers = list_transcripts(root_dir)
    return headers[0]['id'] if headers else None
