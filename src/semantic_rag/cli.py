"""CLI interface for the RAG system."""

import argparse
import logging
import sys

from semantic_rag.config import AppConfig
from semantic_rag.document_loader import load_documents
from semantic_rag.errors import RAGError
from semantic_rag.models import ChatMessage
from semantic_rag.services import build_services


def _setup_logging(verbose: bool = False, level: str = "INFO") -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else getattr(logging, level),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def ingest(folder_path: str, config: AppConfig | None = None, reset: bool = False) -> None:
    """Ingest documents from a folder into the vector store.

    Loads all supported files (.txt, .md, .pdf, .docx) from the given folder,
    splits them into chunks, embeds them and stores them in ChromaDB.

    Args:
        folder_path: Path to the directory containing documents.
        config: Application configuration. Uses defaults if not provided.
        reset: Delete every stored passage before ingesting.
    """
    cfg = config or AppConfig()

    print(f"\n📂 Loading documents from: {folder_path}")
    documents = load_documents(folder_path)

    if not documents:
        print("No supported documents found (.txt, .md, .pdf, .docx)")
        return

    services = build_services(cfg)
    if reset:
        removed = services.store.delete_all()
        print(f"🗑️  Removed {removed} existing chunks")

    print(f"\n✂️  Chunking and embedding {len(documents)} document(s)...")
    results = services.ingestor.ingest_documents(documents)

    stored = sum(r.chunks for r in results)
    for result in results:
        if result.status != "success":
            print(f"  {result.filename}: {result.status} ({result.reason})")

    print(f"\n✅ Ingestion complete! ({stored} chunks stored)")


def chat(config: AppConfig | None = None, model: str | None = None) -> None:
    """Start an interactive chat session.

    Each question is answered with the streaming RAG pipeline; cached
    answers are marked as such. Exits on 'quit', 'exit', 'q', EOF, or
    KeyboardInterrupt.

    Args:
        config: Application configuration. Uses defaults if not provided.
        model: Ollama model to use instead of the configured default.
    """
    cfg = config or AppConfig()
    services = build_services(cfg)
    if model:
        services.settings.update({"generation": {"model": model}})

    count = services.store.count()
    if count == 0:
        print("No documents in the vector store. Run ingestion first:")
        print("  python -m semantic_rag ingest --folder ./documents")
        return

    settings = services.settings.get()
    print(f"\n📚 RAG Chat ({count} chunks indexed)")
    print(f"🤖 Using Ollama model: {settings.generation.model}")
    print("\nType your question (or 'quit' to exit):\n")

    history: list[ChatMessage] = []
    while True:
        try:
            query = input("You: ").strip()
        except (EOFError, KeyboardInterrupt):
            print("\nGoodbye!")
            break

        if not query:
            continue
        if query.lower() in ("quit", "exit", "q"):
            print("Goodbye!")
            break

        history.append(ChatMessage(role="user", content=query))
        try:
            stream = services.engine.answer(history, services.settings.get())
        except RAGError as exc:
            print(f"\n⚠️  {exc}\n")
            history.pop()
            continue

        print("\nAssistant:")
        parts: list[str] = []
        failed = False
        for event in stream:
            if event.kind == "cache_hit":
                print(f"(cached, similarity {event.similarity:.2f})")
                print(event.text, end="", flush=True)
                parts.append(event.text)
            elif event.kind == "delta":
                print(event.text, end="", flush=True)
                parts.append(event.text)
            elif event.kind == "error":
                print(f"⚠️  {event.text}", end="")
                failed = True
        print("\n")

        if failed:
            history.pop()
        else:
            history.append(ChatMessage(role="assistant", content="".join(parts)))


def serve(
    config: AppConfig | None = None,
    host: str | None = None,
    port: int | None = None,
) -> None:
    """Run the HTTP API with uvicorn."""
    import uvicorn

    cfg = config or AppConfig()
    uvicorn.run(
        "semantic_rag.web:app",
        host=host or cfg.server.host,
        port=port or cfg.server.port,
    )


def clear_cache(config: AppConfig | None = None) -> None:
    services = build_services(config or AppConfig())
    removed = services.cache.clear()
    print(f"🧹 Removed {removed} cached answers")


def main() -> None:
    """CLI entry point: parse arguments and dispatch to a command."""
    parser = argparse.ArgumentParser(
        description="Semantic RAG: retrieval-augmented chat with a semantic cache",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Enable debug logging"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # ingest
    ingest_p = subparsers.add_parser("ingest", help="Ingest documents from a folder")
    ingest_p.add_argument(
        "--folder", type=str, default="./documents", help="Documents folder path"
    )
    ingest_p.add_argument(
        "--reset", action="store_true", help="Delete stored chunks before ingesting"
    )

    # chat
    chat_p = subparsers.add_parser("chat", help="Start interactive chat")
    chat_p.add_argument("--model", type=str, default=None, help="Ollama model name")

    # serve
    serve_p = subparsers.add_parser("serve", help="Run the HTTP API")
    serve_p.add_argument("--host", type=str, default=None)
    serve_p.add_argument("--port", type=int, default=None)

    subparsers.add_parser("clear-cache", help="Remove every cached answer")

    args = parser.parse_args()
    cfg = AppConfig()
    _setup_logging(args.verbose, cfg.log.level)

    if args.command == "ingest":
        ingest(args.folder, cfg, reset=args.reset)
    elif args.command == "chat":
        chat(cfg, model=args.model)
    elif args.command == "serve":
        serve(cfg, host=args.host, port=args.port)
    elif args.command == "clear-cache":
        clear_cache(cfg)
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
