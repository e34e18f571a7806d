"""
Batch loader: run a folder of saved webhook payloads through ingestion.

Usage: python -m chathook.cli <folder> [--clean] [--verbose]
"""
import argparse
import json
import sys
from pathlib import Path
from typing import List, Optional

from chathook.core.config import get_settings
from chathook.core.database import get_db_context, init_db
from chathook.core.errors import UnrecognizedPayload
from chathook.core.logging import get_logger, setup_logging
from chathook.services.ingest import BatchResult, IngestionService
from chathook.services.repository import MessageRepository

logger = get_logger("chathook.cli")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Ingest every *.json payload file in a folder."
    )
    parser.add_argument("folder", help="Folder containing JSON payload files")
    parser.add_argument("--clean", action="store_true", help="Delete all stored messages first")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    return parser


def process_folder(folder: Path, repository: MessageRepository) -> BatchResult:
    """Ingest each file on its own; a broken file is counted and skipped."""
    totals = BatchResult()
    files = sorted(folder.glob("*.json"))
    if not files:
        logger.warning(f"No JSON files found in {folder}")
        return totals

    logger.info(f"Found {len(files)} JSON files to process")
    for path in files:
        service = IngestionService(repository, settings=get_settings(), source=path.name)
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
            result = service.ingest(payload)
        except (OSError, json.JSONDecodeError, UnrecognizedPayload) as e:
            logger.error(f"Failed to process {path.name}: {e}")
            totals.record_failure("file_error", f"{path.name}: {e}")
            continue

        logger.info(
            f"Completed {path.name}",
            extra={
                "extra_data": {
                    "inserted": result.inserted,
                    "updated": result.updated,
                    "duplicates": result.duplicates,
                    "errors": result.errors,
                }
            },
        )
        totals.merge(result)

    return totals


def run_cli(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    setup_logging("DEBUG" if args.verbose else None)

    folder = Path(args.folder)
    if not folder.is_dir():
        logger.error(f"Folder does not exist: {folder}")
        return 1

    init_db()
    with get_db_context() as db:
        repository = MessageRepository(db)
        if args.clean:
            deleted = repository.delete_all()
            logger.info(f"Deleted {deleted} existing messages")
        totals = process_folder(folder, repository)

    logger.info("Processing complete", extra={"extra_data": totals.to_dict()})
    return 1 if totals.errors else 0


def main() -> None:
    sys.exit(run_cli(sys.argv[1:]))


if __name__ == "__main__":
    main()
