"""Terminal client that reuses the in-process search logic."""
from __future__ import annotations

import argparse
import asyncio
from pathlib import Path
from typing import Iterable

from product_search.cache import InMemoryCacheStore
from product_search.config import settings
from product_search.document_store import MongoDocumentStore
from product_search.enricher import ResponseEnricher
from product_search.models import SearchRequest
from product_search.service import SearchService
from product_search.solr_client import SolrClient

MAX_RESULTS = 100
GREEN = "\033[92m"
RED = "\033[91m"
RESET = "\033[0m"


async def perform_query(query: str, args: argparse.Namespace) -> dict:
    # Clients are bound to the running loop, and every query gets its own loop.
    engine = SolrClient(settings.solr_url, settings.solr_core, timeout=settings.solr_timeout_seconds)
    store = None if args.no_enrich else MongoDocumentStore(settings.mongo_url)
    enricher = None
    if store is not None:
        enricher = ResponseEnricher(store, InMemoryCacheStore(settings.entity_cache_ttl_seconds), engine=engine)
    service = SearchService(engine, enricher)
    request = SearchRequest(
        text=query,
        lang=args.lang,
        rows=min(args.rows, MAX_RESULTS),
        group_variants=args.group_variants,
    )
    loop = asyncio.get_running_loop()
    started = loop.time()
    try:
        payload = await service.search(request, args.tenant)
    finally:
        await engine.aclose()
        if store is not None:
            await store.close()
    payload["eta_ms"] = (loop.time() - started) * 1000
    return payload


def interactive_shell(args: argparse.Namespace) -> None:
    print(f"Product search on tenant {args.tenant} ({args.lang}). Type 'exit' to quit.")
    while True:
        try:
            query = input("> ").strip()
        except (EOFError, KeyboardInterrupt):
            print()
            return
        if not query:
            continue
        if query.lower() in {"exit", "quit"}:
            return
        response = asyncio.run(perform_query(query, args))
        pretty_print_response(query, response)


def pretty_print_response(query: str, payload: dict) -> None:
    data = payload.get("data", {})
    results = data.get("results", [])
    eta = float(payload.get("eta_ms", 0))
    color = GREEN if eta < 200 else RED
    eta_label = f"{color}{eta:.1f} ms{RESET}"
    print(f"Query: {query} | results: {len(results)} of {data.get('numFound', 0)} | ETA: {eta_label}")
    for idx, item in enumerate(results[:MAX_RESULTS], start=1):
        brand = (item.get("brand") or {}).get("label") or "-"
        variants = item.get("variants") or []
        suffix = f" | {len(variants)} variants" if variants else ""
        print(f"  {idx:02d}. {item.get('entity_code')} | {brand} | {item.get('name')}{suffix}")


def batch_mode(file_path: Path, args: argparse.Namespace) -> None:
    with file_path.open("r", encoding="utf-8") as fh:
        for line in fh:
            query = line.strip()
            if not query:
                continue
            response = asyncio.run(perform_query(query, args))
            pretty_print_response(query, response)


def main(argv: Iterable[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="CLI client for the product search service")
    parser.add_argument("query", nargs="?", help="Query string. If omitted, starts REPL mode.")
    parser.add_argument("--batch", type=Path, help="File with queries to execute line by line")
    parser.add_argument("--lang", default=settings.default_lang, help="Result language")
    parser.add_argument("--tenant", default=settings.default_tenant, help="Tenant database / engine core")
    parser.add_argument("--rows", type=int, default=settings.default_rows)
    parser.add_argument("--group-variants", action="store_true", help="Collapse variants under their parent")
    parser.add_argument("--no-enrich", action="store_true", help="Skip the document store overlay")
    args = parser.parse_args(list(argv) if argv is not None else None)

    if args.batch:
        batch_mode(args.batch, args)
        return 0
    if args.query:
        response = asyncio.run(perform_query(args.query, args))
        pretty_print_response(args.query, response)
        return 0
    interactive_shell(args)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
