"""Marginalia - cited note elaboration

Simple CLI for elaborating a stored note or a piece of ad-hoc text.
"""

import argparse
import asyncio
import sys

from marginalia.api.deps import build_services
from marginalia.config import settings
from marginalia.errors import MarginaliaError
from marginalia.models.elaboration import ElaborationResponse
from marginalia.services.citations import format_references
from marginalia.services.note_store import InMemoryNoteStore


def print_elaboration(response: ElaborationResponse, style: str = "numbered") -> None:
    meta = response.metadata
    print(f"[*] Search query: {meta.search_query or 'N/A'}")
    if meta.cached:
        print(f"[*] Cached result (updated {meta.cache_age}, {meta.age_hours}h old)")
    else:
        print(f"[*] Sources: {meta.sources_used or 0} used of {meta.sources_found or 0} found")
        print(f"[*] Runtime: {meta.elapsed_ms}ms, ~{meta.tokens.total} tokens")

    for section in response.sections:
        print(f"\n{'=' * 50}")
        print(section.type.upper())
        print(f"{'=' * 50}")
        print(section.content)

    print(f"\n{'=' * 50}")
    print("REFERENCES")
    print(f"{'=' * 50}")
    print(format_references(response.references, style))


async def run_elaboration(
    note_id: str | None,
    text: str | None,
    force: bool = False,
    style: str = "numbered",
) -> int:
    """Elaborate ``note_id`` from the configured store, or ``text`` through a throwaway one."""
    if text is not None:
        services = build_services(settings, store=InMemoryNoteStore())
        chapter = await services.store.create_chapter("cli", "Command line")
        note = await services.store.create_note(chapter.id, text[:100], body_md=text)
        note_id = note.id
    else:
        services = build_services(settings)

    print(f"Elaborating note: {note_id}")
    print("-" * 50)
    try:
        response = await services.orchestrator.elaborate(note_id, force=force)
    except MarginaliaError as exc:
        print(f"\n[!] {type(exc).__name__}: {exc.message}")
        return 1
    finally:
        await services.store.close()

    print_elaboration(response, style)
    return 0


def main():
    parser = argparse.ArgumentParser(description="Marginalia note elaboration")
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--note-id", "-n", help="Elaborate a stored note by id")
    source.add_argument("--text", "-t", help="Elaborate ad-hoc text without storing it")
    parser.add_argument("--force", "-f", action="store_true", help="Ignore any cached elaboration")
    parser.add_argument(
        "--style",
        choices=["numbered", "apa", "mla"],
        default="numbered",
        help="Reference list style",
    )

    args = parser.parse_args()

    sys.exit(asyncio.run(run_elaboration(args.note_id, args.text, args.force, args.style)))


if __name__ == "__main__":
    main()
