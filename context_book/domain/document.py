from dataclasses import dataclass, field
from typing import List, Protocol

from .models import ChatMessage, Segment


@dataclass
class Document:
    id: str
    title: str
    segments: List[Segment]
    chat_history: List[ChatMessage] = field(default_factory=list)
    created_at: int = 0
    updated_at: int = 0


class DocumentStore(Protocol):
    def save_document(self, document: Document) -> None:
        ...

    def get_document(self, document_id: str) -> Document:
        ...

    def list_documents(self) -> List[Document]:
        ...

    def update_chat_history(self, document_id: str, history: List[ChatMessage]) -> Document:
        ...

    def delete_document(self, document_id: str) -> None:
        ...
