#!/usr/bin/env python3
"""
Command-line runner for one query generation.

Loads .env, starts the service, turns a prompt into a dataset and prints
the reply plus (optionally) the first rows of the dataset.

Usage:
    python scripts/run_query.py "salaries above 1000 USD" --tenant t1 --permission ViewEmployee --rows 10
"""

import argparse
import asyncio
import sys
from pathlib import Path

# Add the src directory to the Python path
project_root = Path(__file__).parent.parent
src_path = project_root / "src"
sys.path.insert(0, str(src_path))

# Load environment variables
from dotenv import load_dotenv

env_file = project_root / ".env"
if env_file.exists():
    load_dotenv(env_file)
    print(f"✓ Loaded environment variables from {env_file}")
else:
    print(f"⚠ No .env file found at {env_file}")
    print("  Required settings must come from the environment")


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Generate a SQL dataset from a natural-language prompt")
    parser.add_argument("prompt", help="Natural-language request")
    parser.add_argument("--tenant", required=True, help="Tenant id owning the dataset")
    parser.add_argument("--user", default=None, help="User id, used for logging only")
    parser.add_argument("--permission", action="append", default=[], help="Granted permission key (repeatable)")
    parser.add_argument("--dataset", default=None, help="Existing dataset id to improve")
    parser.add_argument("--rows", type=int, default=0, help="Print this many rows of the resulting dataset")
    parser.add_argument("--console", action="store_true", help="Human-readable log output")
    return parser.parse_args()


async def main() -> int:
    from querygen.config import get_settings
    from querygen.domain.pipeline import RequestContext
    from querygen.services.query_generation_service import QueryGenerationService
    from querygen.utils.logging import configure_logging

    args = parse_args()
    settings = get_settings()
    configure_logging(settings.app.log_level.value, console=args.console)

    service = QueryGenerationService(settings)
    context = RequestContext(
        tenant_id=args.tenant,
        user_id=args.user,
        permissions=frozenset(args.permission),
    )

    try:
        await service.startup()
        result = await service.generate(args.prompt, context, dataset_id=args.dataset)

        print()
        print(result.reply)
        print()
        print(f"Stages: {' -> '.join(stage.value for stage in result.trace.stages())}")
        if not result.succeeded:
            return 1

        print(f"Dataset: {result.dataset_id} (from cache: {result.from_cache})")
        if args.rows > 0 and result.dataset_id:
            rows = await service.datasets.get_data(result.dataset_id, context.permissions, limit=args.rows)
            for row in rows:
                print(row)
        return 0
    finally:
        await service.close()


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
