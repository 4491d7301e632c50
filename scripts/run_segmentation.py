import argparse
import asyncio
import sys
import time

import redis.asyncio as redis

from personalization.config import REDIS_HOST, REDIS_PORT
from personalization.engine import build_engine
from personalization.gateways import VoucherGateway


async def run(force: bool, batch_size: int) -> int:
    redis_client = redis.Redis(host=REDIS_HOST, port=REDIS_PORT, decode_responses=True)
    engine = build_engine(redis_client, sinks=[VoucherGateway()])
    try:
        result = await engine.analyze_all(force=force, batch_size=batch_size)
    finally:
        await engine.close()
        await redis_client.aclose()

    print(f"\n{'=' * 60}")
    print(f"Customers: {result.total}, processed: {result.processed}")
    print(f"Succeeded: {result.success}, failed: {result.failed}")
    print(f"{'=' * 60}")
    for item in result.results:
        if item.error:
            print(f"  {item.subject_id}: {item.error}")
    return result.failed


def main():
    parser = argparse.ArgumentParser(description="Re-segment every customer")
    parser.add_argument("--batch-size", type=int, default=10)
    parser.add_argument(
        "--no-force",
        action="store_true",
        help="Reuse segmentations analyzed within the freshness window",
    )
    args = parser.parse_args()

    print("Starting segmentation run...")
    start = time.time()
    failed = asyncio.run(run(force=not args.no_force, batch_size=args.batch_size))
    print(f"\nSegmentation run complete in {time.time() - start:.1f}s")
    if failed:
        sys.exit(1)


if __name__ == "__main__":
    main()
