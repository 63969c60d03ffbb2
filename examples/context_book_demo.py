"""Minimal demonstration of analysing a text and chatting with the result."""

import sys

from context_book.api.service import analyze_document, send_message
from context_book.domain.export import render_toc
from context_book.domain.models import Segment

if __name__ == "__main__":
    path = sys.argv[1] if len(sys.argv) > 1 else "README.md"
    with open(path, encoding="utf-8") as f:
        text = f.read()
    doc = analyze_document(text)
    print("Title:", doc["title"])
    print(render_toc([Segment(**s) for s in doc["segments"]]))

    question = "这份文档的核心结论是什么？"
    reply = ""
    for message in send_message(question, document_id=doc["id"]):
        reply = message.text
    print("User:", question)
    print("Model:", reply)
