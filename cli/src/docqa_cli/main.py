from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Annotated

import typer
from docqa import DocQA
from docqa.logging_config import configure_logging
from docqa.schemas.documents import ChunkingOptions
from docqa.schemas.rag_chat import (
    ErrorEvent,
    ProcessingEvent,
    SourcesEvent,
    StreamEvent,
    TextChunkEvent,
)
from docqa.services.text_generation import resolve_openai_api_key

app = typer.Typer(add_completion=False, help="Ask questions about and summarize text documents.")

DocumentArgument = Annotated[
    Path,
    typer.Argument(
        exists=True,
        readable=True,
        dir_okay=False,
        help="Plain-text document; form feeds separate pages.",
    ),
]
PagesOption = Annotated[
    int | None,
    typer.Option("--pages", min=1, help="Page count (default: form-feed separated pages)."),
]
ApiKeyOption = Annotated[
    str | None,
    typer.Option("--openai-api-key", envvar="OPENAI_API_KEY", help="OpenAI API key."),
]
BaseUrlOption = Annotated[
    str | None,
    typer.Option("--openai-base-url", help="OpenAI-compatible base URL."),
]
ModelOption = Annotated[
    str | None,
    typer.Option("--model", help="Override DOCQA_CHAT_MODEL for this run."),
]
JsonOption = Annotated[bool, typer.Option("--json", help="Emit JSON output.")]


@app.callback()
def main(
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Enable debug logging.")] = False,
    json_logs: Annotated[bool, typer.Option("--json-logs", help="Log as JSON lines.")] = False,
) -> None:
    if verbose or json_logs:
        configure_logging(logging.DEBUG if verbose else logging.INFO, json_output=json_logs)


def _require_api_key(provided: str | None) -> str:
    resolved = resolve_openai_api_key(provided) or resolve_openai_api_key(None)
    if resolved:
        return resolved
    raise typer.BadParameter(
        "Missing OpenAI API key. Provide --openai-api-key or set OPENAI_API_KEY."
    )


def _print_json(payload: object) -> None:
    typer.echo(json.dumps(payload, indent=2, default=str))


def _client(openai_api_key: str | None, openai_base_url: str | None, model: str | None) -> DocQA:
    key = _require_api_key(openai_api_key)
    return DocQA(openai_api_key=key, openai_base_url=openai_base_url, model=model)


@app.command()
def ask(
    document: DocumentArgument,
    question: Annotated[str, typer.Argument(help="Question to answer.")],
    pages: PagesOption = None,
    selected_text: Annotated[
        str | None,
        typer.Option("--selected-text", help="Passage the question is about."),
    ] = None,
    selected_page: Annotated[
        int | None,
        typer.Option("--selected-page", min=1, help="Page to focus retrieval on."),
    ] = None,
    openai_api_key: ApiKeyOption = None,
    openai_base_url: BaseUrlOption = None,
    model: ModelOption = None,
    json_output: JsonOption = False,
) -> None:
    """Ingest a document and answer one question with citations."""

    client = _client(openai_api_key, openai_base_url, model)
    upload = client.ingest(document, total_pages=pages)
    result = client.query(
        upload.document_id,
        question,
        selected_text=selected_text,
        selected_page=selected_page,
    )

    if json_output:
        _print_json(result.model_dump(mode="json"))
        return

    typer.echo(result.answer)
    if result.citations:
        typer.echo("\nSources:")
        for idx, citation in enumerate(result.citations, start=1):
            typer.echo(f"[{idx}] page {citation.page_number}: {citation.text}")


@app.command()
def summarize(
    document: DocumentArgument,
    pages: PagesOption = None,
    quick: Annotated[
        bool,
        typer.Option("--quick", help="Single-call summary of the document opening."),
    ] = False,
    openai_api_key: ApiKeyOption = None,
    openai_base_url: BaseUrlOption = None,
    model: ModelOption = None,
    json_output: JsonOption = False,
) -> None:
    """Summarize a document with numbered chunk-level sources."""

    client = _client(openai_api_key, openai_base_url, model)
    upload = client.ingest(document, total_pages=pages)
    result = client.summarize(upload.document_id, quick=quick)

    if json_output:
        _print_json(result.model_dump(mode="json"))
        return

    typer.echo(result.summary)
    if result.sources:
        typer.echo("\nSources:")
        for source in result.sources:
            typer.echo(f"[{source.chunk_index + 1}] page {source.page_number}: {source.contribution}")


@app.command()
def chunks(
    document: DocumentArgument,
    pages: PagesOption = None,
    chunk_size: Annotated[int | None, typer.Option("--chunk-size", min=1)] = None,
    overlap: Annotated[int | None, typer.Option("--overlap", min=0)] = None,
    min_chunk_size: Annotated[int | None, typer.Option("--min-chunk-size", min=0)] = None,
    json_output: JsonOption = False,
) -> None:
    """Show how a document is split into chunks (no API key needed)."""

    client = DocQA(start_cleanup=False)
    upload = client.ingest(
        document,
        total_pages=pages,
        chunking=ChunkingOptions(
            chunk_size=chunk_size,
            overlap=overlap,
            min_chunk_size=min_chunk_size,
        ),
    )
    stored = client.get_document(upload.document_id)

    if json_output:
        _print_json(
            {
                "upload": upload.model_dump(mode="json"),
                "chunks": [
                    {
                        "chunk_id": chunk.chunk_id,
                        "page_number": chunk.page_number,
                        "start_char": chunk.start_char,
                        "end_char": chunk.end_char,
                        "length": len(chunk.text),
                    }
                    for chunk in stored.chunks
                ],
            }
        )
        return

    typer.echo(f"{upload.filename}: {upload.total_chunks} chunks over {upload.total_pages} pages")
    for chunk in stored.chunks:
        typer.echo(
            f"{chunk.chunk_index:>4}  page {chunk.page_number:<4} "
            f"[{chunk.start_char}:{chunk.end_char}]"
        )


@app.command()
def chat(
    document: DocumentArgument,
    pages: PagesOption = None,
    openai_api_key: ApiKeyOption = None,
    openai_base_url: BaseUrlOption = None,
    model: ModelOption = None,
) -> None:
    """Interactive chat loop over one document (answers are streamed)."""

    with _client(openai_api_key, openai_base_url, model) as client:
        _chat_loop(client, document, pages)


def _chat_loop(client: DocQA, document: Path, pages: int | None) -> None:
    upload = client.ingest(document, total_pages=pages)
    typer.echo(upload.summary)
    typer.echo("Enter questions. Type 'exit' or 'quit' to leave.")

    session_id: str | None = None

    def _on_event(event: StreamEvent) -> None:
        nonlocal session_id
        if isinstance(event, ProcessingEvent):
            session_id = event.content.session_id
        elif isinstance(event, SourcesEvent):
            pages_seen = sorted({source.page_number for source in event.content})
            if pages_seen:
                typer.echo(f"(sources from pages {', '.join(str(p) for p in pages_seen)})")
        elif isinstance(event, TextChunkEvent):
            typer.echo(event.content, nl=False)
        elif isinstance(event, ErrorEvent):
            typer.echo(f"Error: {event.content}", err=True)

    while True:
        try:
            text = typer.prompt(">")
        except (EOFError, KeyboardInterrupt, typer.Abort):
            typer.echo("\nBye.")
            raise typer.Exit(code=0) from None

        if text.strip().lower() in {"exit", "quit"}:
            raise typer.Exit(code=0)

        client.stream(upload.document_id, text, session_id=session_id, on_event=_on_event)
        typer.echo("\n")


if __name__ == "__main__":
    app()
