#!/usr/bin/env python
"""Generate a CV portal for one job from the command line.

Usage:
    python scripts/generate_portal.py JOB_ID                      # Use the stored job
    python scripts/generate_portal.py JOB_ID --cv-file cv.json    # Load parsed CV first
    python scripts/generate_portal.py JOB_ID --force --debug      # Rebuild with verbose logs
"""
import argparse
import asyncio
import json
import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

import structlog

from cvportal import config
from cvportal.log import configure_logging
from cvportal.models import PortalGenerationStep
from cvportal.portal.pipeline import build_portal_service

logger = structlog.get_logger()


def print_result(result) -> None:
    print(f"\n{'=' * 60}")
    print(f"  {'Portal Ready' if result.success else 'Portal Generation Failed'}")
    print(f"{'=' * 60}\n")

    print(f"  Steps completed:      {len(result.steps_completed)}")
    for step in result.steps_completed:
        print(f"    - {step.value}")
    print(f"  Embeddings generated: {result.embeddings_generated}")
    print(f"  Time elapsed:         {result.processing_time_ms / 1000:.1f}s")

    if result.urls:
        print(f"\n  Portal: {result.urls.portal}")
        print(f"  Chat:   {result.urls.chat}")

    if result.warnings:
        print("\n  Warnings:")
        for warning in result.warnings:
            print(f"    ! {warning}")

    if result.error:
        print(f"\n  Error [{result.error.code.value}]: {result.error.message}")

    print(f"\n{'=' * 60}\n")


async def main():
    parser = argparse.ArgumentParser(
        description="Generate an interactive CV portal for a job",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("job_id", help="Job identifier")
    parser.add_argument(
        "--cv-file",
        type=Path,
        default=None,
        help="Parsed CV JSON to store as the job's parsedData before generating",
    )
    parser.add_argument("--template", default=None, help="Template id (auto-selected if omitted)")
    parser.add_argument("--force", action="store_true", help="Regenerate even if a portal exists")
    parser.add_argument(
        "--skip",
        action="append",
        default=[],
        choices=[step.value for step in PortalGenerationStep],
        metavar="STEP",
        help="Skip a non-fatal step (repeatable)",
    )
    parser.add_argument("--timeout-ms", type=int, default=None, help="Wall-clock budget")
    parser.add_argument("--debug", action="store_true", help="Verbose step logging")

    args = parser.parse_args()
    configure_logging("DEBUG" if args.debug else config.LOG_LEVEL)

    try:
        service = build_portal_service()

        if args.cv_file:
            with open(args.cv_file, "r") as f:
                parsed = json.load(f)
            service.repository.save_job(args.job_id, {"parsedData": parsed})
            print(f"\n📄 Loaded {args.cv_file} into job {args.job_id}")

        print("\n📋 Configuration:")
        print(f"   Embedding model:  {config.EMBEDDING_MODEL} ({config.EMBEDDING_DIMENSION} dims)")
        print(f"   Chat model:       {config.CHAT_MODEL}")
        print(f"   Database:         {service.repository.db_path}")
        print(f"   Deploy target:    {'Hugging Face' if config.HUGGINGFACE_TOKEN else 'none (no token)'}")

        result = await service.generate_portal(
            args.job_id,
            config={"template": args.template} if args.template else None,
            options={
                "forceRegenerate": args.force,
                "skipSteps": args.skip,
                "timeoutMs": args.timeout_ms,
                "debugMode": args.debug,
            },
        )
        print_result(result)

        if not result.success:
            sys.exit(1)

    except KeyboardInterrupt:
        print("\n\n⚠️  Generation cancelled by user.\n")
        sys.exit(1)

    except (FileNotFoundError, json.JSONDecodeError) as e:
        print(f"\n❌ Error: {e}\n")
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
