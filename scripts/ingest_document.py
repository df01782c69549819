"""
Upload a local text document to a running server.

Usage:
    python scripts/ingest_document.py paper.txt [--doc-id ID] [--server URL]

Pages are separated by form feeds (as produced by `pdftotext`); each page is
chunked locally and posted to `/ingest` in one request.
"""

import argparse
import asyncio
import os
import sys
from pathlib import Path

# Ensure src is in pythonpath
sys.path.append(os.path.join(os.path.dirname(__file__), "..", "src"))

from dotenv import load_dotenv
load_dotenv()

import httpx

from rag_cache_server.ingest.chunking import chunk_text


def build_chunks(text, chunk_size, overlap):
    chunks = []
    for page_number, page in enumerate(text.split("\f"), start=1):
        for piece in chunk_text(page, chunk_size=chunk_size, overlap=overlap):
            chunks.append({"text": piece, "page": page_number})
    return chunks


async def main():
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[1])
    parser.add_argument("path", type=Path)
    parser.add_argument("--doc-id", default=None)
    parser.add_argument("--source", default=None)
    parser.add_argument("--server", default=os.getenv("RAG_SERVER_URL", "http://localhost:8000"))
    parser.add_argument("--chunk-size", type=int, default=int(os.getenv("CHUNK_SIZE", "900")))
    parser.add_argument("--overlap", type=int, default=int(os.getenv("CHUNK_OVERLAP", "150")))
    args = parser.parse_args()

    text = args.path.read_text(encoding="utf-8", errors="replace")
    chunks = build_chunks(text, args.chunk_size, args.overlap)
    if not chunks:
        print("No text found, nothing to ingest.")
        return

    print(f"Generated {len(chunks)} chunks from {args.path.name}. Uploading...")

    body = {"chunks": chunks, "source": args.source or args.path.name}
    if args.doc_id:
        body["docId"] = args.doc_id

    async with httpx.AsyncClient(timeout=120.0) as client:
        resp = await client.post(f"{args.server.rstrip('/')}/ingest", json=body)

    if resp.status_code == 429:
        data = resp.json()
        print(f"Rate limited after {data.get('upserted', 0)} chunks. Retry later.")
        sys.exit(1)

    resp.raise_for_status()
    data = resp.json()
    print(f"Done. docId={data['docId']} upserted={data['upserted']}")


if __name__ == "__main__":
    asyncio.run(main())
