"""
Process a case from the command line: index, classify, search or report gaps.

Uses the same components as the API, against the database in POSTGRES_URL.

Usage:
    python process_case.py index CASE_ID                 # (Re-)embed every document
    python process_case.py classify CASE_ID              # Classify unclassified documents
    python process_case.py classify CASE_ID --workers 4  # Up to 4 model calls in flight
    python process_case.py search CASE_ID "mortgage payment" --mode semantic
    python process_case.py gaps CASE_ID                  # Missing documents and date gaps
"""

import os
import sys
import json
import argparse
import logging
from pathlib import Path
from dotenv import load_dotenv

# Ensure project root is on path
PROJECT_ROOT = Path(__file__).resolve().parent
sys.path.insert(0, str(PROJECT_ROOT))
load_dotenv()

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger(__name__)


def build_stores(db_url: str):
    from execution.case_intel.database import Database, DatabaseConfig
    from execution.case_intel.document_store import DocumentStore

    db = Database(DatabaseConfig(connection_string=db_url, use_pooling=False))
    db.connect()
    store = DocumentStore(db)
    store.initialize_schema()
    return db, store


def build_vector_store(db, embeddings):
    from execution.case_intel.vector_store import VectorStore, VectorStoreConfig

    vector_store = VectorStore(db, VectorStoreConfig(embedding_dimensions=embeddings.dimensions))
    vector_store.initialize_schema()
    return vector_store


def cmd_index(args, db, store, tracker) -> int:
    from execution.case_intel.embeddings import get_embedding_service
    from execution.case_intel.indexer import EmbeddingIndexer
    from execution.case_intel.text_extraction import DocumentTextSource, LocalFileLoader

    embeddings = get_embedding_service(provider=args.provider)
    indexer = EmbeddingIndexer(
        build_vector_store(db, embeddings),
        embeddings,
        usage_tracker=tracker,
        document_store=store,
        text_source=DocumentTextSource(LocalFileLoader(args.storage_dir)),
    )
    batch = indexer.index_case(args.case_id)
    print(json.dumps(batch.to_dict(), indent=2))
    return 1 if batch.aborted else 0


def cmd_classify(args, db, store, tracker) -> int:
    from execution.case_intel.classification import ClassificationConfig, ClassificationPipeline
    from execution.case_intel.text_extraction import DocumentTextSource, LocalFileLoader

    config = ClassificationConfig()
    if args.workers:
        config.max_concurrency = args.workers

    pipeline = ClassificationPipeline(
        store,
        text_source=DocumentTextSource(LocalFileLoader(args.storage_dir)),
        config=config,
        usage_tracker=tracker,
    )
    batch = pipeline.classify_all_documents(args.case_id, user_id=args.user_id)
    for error in batch.errors:
        logger.warning(f"  {error['document_id']}: {error['error']}")
    logger.info(f"Stats: {pipeline.get_classification_stats(args.case_id)}")
    return 1 if batch.aborted else 0


def cmd_search(args, db, store, tracker) -> int:
    from execution.case_intel.embeddings import get_embedding_service
    from execution.case_intel.retriever import HybridRetriever

    embeddings = get_embedding_service(provider=args.provider)
    retriever = HybridRetriever(build_vector_store(db, embeddings), embeddings, usage_tracker=tracker)
    response = retriever.search(args.case_id, args.query, mode=args.mode, limit=args.limit)
    for hit in response.results:
        print(f"[{hit.relevance_score:.3f}] {hit.match_type:9s} {hit.file_name} #{hit.chunk_index}")
        print(f"    {hit.snippet}")
    return 0


def cmd_gaps(args, db, store, tracker) -> int:
    from execution.case_intel.gap_detection import detect_gaps, documents_from_records

    report = detect_gaps(documents_from_records(store.list_case_documents(args.case_id)))
    print(json.dumps(report.to_dict(), indent=2))
    return 0


COMMANDS = {
    "index": cmd_index,
    "classify": cmd_classify,
    "search": cmd_search,
    "gaps": cmd_gaps,
}


def main():
    parser = argparse.ArgumentParser(description="Case document processing")
    parser.add_argument("--db-url", default=os.getenv("POSTGRES_URL"), help="PostgreSQL connection URL")
    parser.add_argument("--storage-dir", default=os.getenv("DOCUMENT_STORAGE_DIR", "document_files"),
                        help="Directory holding the uploaded files")
    sub = parser.add_subparsers(dest="command", required=True)

    p_index = sub.add_parser("index", help="Chunk and embed every document of a case")
    p_index.add_argument("case_id")
    p_index.add_argument("--provider", default=None, help="Embedding provider (openai, voyage, cohere)")

    p_classify = sub.add_parser("classify", help="Classify unclassified documents")
    p_classify.add_argument("case_id")
    p_classify.add_argument("--user-id", default="cli", help="Recorded in classification history")
    p_classify.add_argument("--workers", type=int, default=0, help="Concurrent model calls")

    p_search = sub.add_parser("search", help="Search a case")
    p_search.add_argument("case_id")
    p_search.add_argument("query")
    p_search.add_argument("--mode", default="hybrid", choices=["full-text", "semantic", "hybrid"])
    p_search.add_argument("--limit", type=int, default=10)
    p_search.add_argument("--provider", default=None, help="Embedding provider (openai, voyage, cohere)")

    p_gaps = sub.add_parser("gaps", help="Report missing documents and date gaps")
    p_gaps.add_argument("case_id")

    args = parser.parse_args()

    if not args.db_url:
        logger.error("No database URL. Set POSTGRES_URL env var or pass --db-url")
        sys.exit(1)

    from execution.case_intel.usage import UsageTracker

    db, store = build_stores(args.db_url)
    tracker = UsageTracker(store=store)
    try:
        status = COMMANDS[args.command](args, db, store, tracker)
    finally:
        db.close()

    usage = tracker.summary()
    if usage.calls:
        logger.info(
            f"Usage: {usage.calls} model calls, {usage.total_tokens:,} tokens, "
            f"{usage.cost_cents:.4f} cents"
        )
    sys.exit(status)


if __name__ == "__main__":
    main()
