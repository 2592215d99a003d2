"""
CLI for running the processing pipeline and its pure stages locally.

Usage:
    inspectflow process FILE [--job-id ID] [--json]
    inspectflow validate JSON_FILE
    inspectflow chunk FILE [--max-size N]
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

from inspectflow.processing.chunker import chunk_text
from inspectflow.processing.config import pipeline_settings
from inspectflow.processing.exceptions import ProcessingError
from inspectflow.processing.schemas import ExtractedData
from inspectflow.processing.validation import validate_extracted

logger = logging.getLogger(__name__)


def cmd_process(args: argparse.Namespace) -> int:
    from inspectflow.config import get_settings
    from inspectflow.processing.pipeline import build_pipeline

    pipeline = build_pipeline(get_settings(), pipeline_settings)
    result = pipeline.process(Path(args.file).read_bytes(), job_id=args.job_id)

    if args.json:
        print(result.model_dump_json(indent=2))
        return 0 if result.success else 1

    print("\n═══════════════ Processing Complete ═══════════════" if result.success
          else "\n═══════════════ Processing Failed ═══════════════")
    print(f"  Job id          : {result.job_id}")
    for step in result.steps:
        duration = f"{step.duration:.3f}s" if step.duration is not None else "-"
        print(f"  {step.name:<16}: {step.status.value:<10} {duration}")
    if result.success:
        print(f"  OCR confidence  : {result.ocr_result.confidence:.2f}")
        print(f"  Key-value pairs : {result.layout_result.key_value_pairs_count}")
        print(f"  Tables          : {result.layout_result.tables_count}")
        print(f"  Chunks stored   : {result.vector_storage.chunks_stored}")
        print(f"  Validation      : {'passed' if result.validation.passed else 'FAILED'}")
        for err in result.validation.errors:
            print(f"    ✗ {err}")
        for warn in result.validation.warnings:
            print(f"    ! {warn}")
        print(f"  Summary         : {result.summary}")
    else:
        print(f"  Failed stage    : {result.failed_stage}")
        print(f"  Error           : {result.error}")
    print(f"  Elapsed         : {result.processing_time_ms} ms")
    print("═══════════════════════════════════════════════════")
    return 0 if result.success else 1


def cmd_validate(args: argparse.Namespace) -> int:
    data = ExtractedData.model_validate(json.loads(Path(args.json_file).read_text(encoding="utf-8")))
    result = validate_extracted(data)
    print(result.model_dump_json(indent=2))
    return 0 if result.passed else 1


def cmd_chunk(args: argparse.Namespace) -> int:
    text = Path(args.file).read_text(encoding="utf-8")
    chunks = chunk_text(
        text,
        max_chunk_size=args.max_size,
        min_chunk_length=pipeline_settings.min_chunk_length,
    )
    for c in chunks:
        print(f"── Chunk {c.index} ({len(c.text)} chars) ──")
        print(f"   {c.text}")
    print(f"\n{len(chunks)} chunks.")
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description="Inspection document processing CLI",
        prog="inspectflow",
    )
    parser.add_argument("--log-level", default="INFO", help="Logging level")
    sub = parser.add_subparsers(dest="command", required=True)

    # process
    p_process = sub.add_parser("process", help="Run the full pipeline on one document")
    p_process.add_argument("file", type=str, help="Text, PDF or image file")
    p_process.add_argument("--job-id", type=str, default=None, help="Existing pending job to drive")
    p_process.add_argument("--json", action="store_true", help="Print the full response as JSON")
    p_process.set_defaults(func=cmd_process)

    # validate
    p_validate = sub.add_parser("validate", help="Validate extracted fields from a JSON file")
    p_validate.add_argument("json_file", type=str, help="camelCase or snake_case field object")
    p_validate.set_defaults(func=cmd_validate)

    # chunk
    p_chunk = sub.add_parser("chunk", help="Show how a text file would be chunked")
    p_chunk.add_argument("file", type=str, help="UTF-8 text file")
    p_chunk.add_argument("--max-size", type=int, default=pipeline_settings.max_chunk_size,
                         help="Maximum chunk size in characters")
    p_chunk.set_defaults(func=cmd_chunk)

    args = parser.parse_args(argv)
    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s | %(levelname)-7s | %(name)s | %(message)s",
    )
    try:
        return args.func(args)
    except (ProcessingError, OSError, ValueError) as exc:
        logger.error("%s", exc)
        return 2


if __name__ == "__main__":
    sys.exit(main())
