import json
import os
from dataclasses import asdict
from pathlib import Path
from typing import Dict, Any, List
from uuid import uuid4

from context_book.config.settings import settings
from context_book.domain.document import Document, DocumentStore
from context_book.domain.exceptions import StoreError
from context_book.domain.models import ChatMessage, Segment, now_ms


class JsonDocumentStore(DocumentStore):
    """每个文档一个 JSON 文件：<root>/documents/<id>.json，写入时先写临时文件再原子替换。"""

    def __init__(self, root: str | Path | None = None):
        self._root = Path(root or settings.storage_root).resolve()
        self._doc_root = self._root / "documents"
        self._doc_root.mkdir(parents=True, exist_ok=True)

    def save_document(self, document: Document) -> None:
        if not document.created_at:
            document.created_at = now_ms()
        document.updated_at = max(now_ms(), document.created_at)
        self._write(document)

    def get_document(self, document_id: str) -> Document:
        path = self._doc_root / f"{document_id}.json"
        if not path.exists():
            raise StoreError(code="DOCUMENT_NOT_FOUND", message=document_id)
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            return self._to_document(data)
        except (OSError, ValueError, KeyError, TypeError) as e:
            raise StoreError(code="STORE_READ_ERROR", message=str(e))

    def list_documents(self) -> List[Document]:
        items: List[Document] = []
        for path in self._doc_root.glob("*.json"):
            try:
                data = json.loads(path.read_text(encoding="utf-8"))
                items.append(self._to_document(data))
            except (OSError, ValueError, KeyError, TypeError):
                continue
        items.sort(key=lambda d: d.updated_at, reverse=True)
        return items

    def update_chat_history(self, document_id: str, history: List[ChatMessage]) -> Document:
        doc = self.get_document(document_id)
        doc.chat_history = list(history)
        self.save_document(doc)
        return doc

    def delete_document(self, document_id: str) -> None:
        path = self._doc_root / f"{document_id}.json"
        if not path.exists():
            raise StoreError(code="DOCUMENT_NOT_FOUND", message=document_id)
        try:
            path.unlink()
        except OSError as e:
            raise StoreError(code="STORE_DELETE_ERROR", message=str(e))

    def _write(self, document: Document) -> None:
        path = self._doc_root / f"{document.id}.json"
        tmp_path = self._doc_root / f"{document.id}.{uuid4().hex}.json.tmp"
        try:
            tmp_path.write_text(json.dumps(asdict(document), ensure_ascii=False), encoding="utf-8")
            os.replace(tmp_path, path)
        except OSError as e:
            raise StoreError(code="STORE_WRITE_ERROR", message=str(e))

    @staticmethod
    def _to_document(data: Dict[str, Any]) -> Document:
        return Document(
            id=data["id"],
            title=data.get("title") or "",
            segments=[
                Segment(
                    id=s["id"],
                    title=s.get("title") or "",
                    summary=s.get("summary") or "",
                    content=s.get("content") or "",
                )
                for s in data.get("segments") or []
            ],
            chat_history=[
                ChatMessage(
                    id=m["id"],
                    role=m["role"],
                    text=m.get("text") or "",
                    timestamp=int(m.get("timestamp", 0)),
                )
                for m in data.get("chat_history") or []
            ],
            created_at=int(data.get("created_at", 0)),
            updated_at=int(data.get("updated_at", 0)),
        )
