"""
Delete voices from the ElevenLabs account.

Usage:
    python -m future_self.tools.delete_voices [--dry-run] [--yes] [--cloned-only]
"""
import argparse
import asyncio
import logging
import sys
from typing import Callable, List, NamedTuple

import httpx

from future_self.core.config import settings
from future_self.core.logging import setup_logging
from future_self.services.cloning.elevenlabs import ElevenLabsClient

logger = logging.getLogger(__name__)

CLONED_CATEGORY = "cloned"


class DeletionSummary(NamedTuple):
    found: int
    deleted: int
    failed: int


def parse_args(argv: List[str] = None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Delete every voice in the ElevenLabs account"
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="List the voices that would be deleted without deleting them",
    )
    parser.add_argument(
        "--yes",
        action="store_true",
        help="Do not ask for confirmation",
    )
    parser.add_argument(
        "--cloned-only",
        action="store_true",
        help="Only delete voices in the 'cloned' category",
    )
    return parser.parse_args(argv)


async def delete_voices(
    client: ElevenLabsClient,
    dry_run: bool = False,
    cloned_only: bool = False,
    echo: Callable[[str], None] = print,
) -> DeletionSummary:
    """Delete voices one by one, printing a status line for each."""
    echo("Fetching voice list...")
    voices = await client.list_voices()
    if cloned_only:
        voices = [v for v in voices if v.get("category") == CLONED_CATEGORY]

    if not voices:
        echo("No voices found - nothing to delete.")
        return DeletionSummary(0, 0, 0)

    echo(f"{'Would delete' if dry_run else 'Deleting'} {len(voices)} voice(s)...")
    deleted = 0
    failed = 0
    for voice in voices:
        voice_id = voice.get("voice_id")
        label = f"{voice_id} ({voice.get('name', '?')})"
        if dry_run:
            echo(f"   - {label} ... skipped (dry run)")
            continue
        try:
            result = await client.delete_voice(voice_id)
        except httpx.HTTPError as e:
            failed += 1
            logger.warning(f"[DELETE VOICES] Failed to delete {voice_id}: {type(e).__name__}: {e}")
            echo(f"   - {label} ... failed")
            continue
        deleted += 1
        echo(f"   - {label} ... {result.get('status', 'ok')}")

    echo("All done.")
    return DeletionSummary(len(voices), deleted, failed)


def main(argv: List[str] = None) -> int:
    """Entry point for the bulk deletion tool."""
    args = parse_args(argv)
    setup_logging()

    if not args.dry_run and not args.yes:
        answer = input("Delete voices from the ElevenLabs account? [y/N] ")
        if answer.strip().lower() not in ("y", "yes"):
            print("Aborted.")
            return 1

    client = ElevenLabsClient.from_settings(settings)
    try:
        summary = asyncio.run(
            delete_voices(client, dry_run=args.dry_run, cloned_only=args.cloned_only)
        )
    except httpx.HTTPError as e:
        logger.error(f"[DELETE VOICES] Could not list voices: {type(e).__name__}: {e}")
        return 1

    return 1 if summary.failed else 0


if __name__ == "__main__":
    sys.exit(main())
