#!/usr/bin/env python3
"""
Round Crawler CLI
=================
Run the agent locally against a clock-driven round oracle.

Subcommands:
    run       crawl N rounds, publishing a proof after each
    publish   publish (or look up) the proof for one round
    validate  validate a peer proof by CID
    keywords  show the search term the keyword source assigns

All configuration flows through ``AgentRunConfig``; credentials come from
``TWITTER_USERNAME`` / ``TWITTER_PASSWORD`` (or ``.env``).

Run with: python -m roundcrawler run --rounds 3
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from dotenv import load_dotenv

from .agent import RoundAgent
from .crawl_engine import StopReason
from .keywords import KeywordSource
from .publisher import PublishStatus
from .rounds import ClockRoundOracle, StaticRoundOracle
from .run_config import AgentRunConfig

# Load .env file (credentials, config) before anything else
env_path = Path(__file__).resolve().parent.parent / '.env'
if env_path.exists():
    load_dotenv(env_path)
else:
    load_dotenv()  # tries CWD

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s | %(levelname)s | %(message)s',
    datefmt='%H:%M:%S'
)
logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

async def _run_rounds(cfg: AgentRunConfig, rounds: int, start_round: int) -> int:
    oracle = ClockRoundOracle(cfg.round_length_s, start_round=start_round)
    agent = RoundAgent.from_config(cfg, oracle)
    try:
        for _ in range(rounds):
            round_number = await oracle()
            task = await agent.start(round_number)
            outcome = await task
            print_outcome(outcome.to_dict())

            if outcome.stop_reason is not StopReason.ROUND_ADVANCED:
                # rate limited or session trouble: sit out the rest of the round
                await asyncio.sleep(oracle.seconds_left())

            cid = await agent.get_round_cid(round_number)
            print(f"  Round {round_number} CID: {cid or '-'}")
    finally:
        await agent.stop()
    return 0


async def _publish(cfg: AgentRunConfig, round_number: int) -> int:
    agent = RoundAgent.from_config(cfg, StaticRoundOracle(round_number))
    result = await agent.publish(round_number)
    print(f"{result.status.value}: {result.content_address or '-'}")
    return 0 if result.status in (PublishStatus.PUBLISHED, PublishStatus.EXISTING) else 1


async def _validate(cfg: AgentRunConfig, cid: str) -> int:
    agent = RoundAgent.from_config(cfg, StaticRoundOracle())
    try:
        verdict = await agent.validate(cid)
    finally:
        await agent.stop()
    print(f"{'PASS' if verdict else 'FAIL'}" + (f": {verdict.reason}" if verdict.reason else ""))
    return 0 if verdict else 1


async def _keywords(cfg: AgentRunConfig, node_key: str) -> int:
    print(await KeywordSource(cfg.keyword_url).fetch(node_key))
    return 0


def print_outcome(outcome: dict):
    """Print crawl summary."""
    print("\n" + "=" * 65)
    print("ROUND COMPLETE")
    print("=" * 65)
    print(f"  Round:          {outcome['round']}")
    print(f"  Stop reason:    {outcome['stop_reason']}")
    print(f"  Iterations:     {outcome['iterations']}")
    print(f"  Items seen:     {outcome['items_seen']}")
    print(f"  Items stored:   {outcome['items_stored']}")
    if outcome['items_skipped']:
        print(f"  Items skipped:  {outcome['items_skipped']}")
    print(f"  Total time:     {outcome['elapsed_sec']:.1f}s")
    if outcome['error']:
        print(f"  Error:          {outcome['error']}")
    print("=" * 65)


# ---------------------------------------------------------------------------
# Flag-driven entry point
# ---------------------------------------------------------------------------

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='roundcrawler',
        description='Round-based crawl-and-validate agent',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m roundcrawler run --rounds 3 --round-length 600
  python -m roundcrawler publish --round 12
  python -m roundcrawler validate bafybeigdyrzt5sfp7udm7hu76uh7y26nf3efuylqabf3oclgtqy55fbzdi
  python -m roundcrawler keywords
        """
    )
    parser.add_argument('--data-dir', type=str, help='Directory for the store and artifacts (default: data)')
    parser.add_argument('-v', '--verbose', action='store_true', help='Debug logging')

    sub = parser.add_subparsers(dest='command', required=True)

    run = sub.add_parser('run', help='Crawl rounds and publish a proof for each')
    run.add_argument('--rounds', type=int, default=1, help='Number of rounds to run (default: 1)')
    run.add_argument('--start-round', type=int, default=0, help='Number of the first round (default: 0)')
    run.add_argument('--round-length', type=float, help='Round length in seconds (default: 600)')
    run.add_argument('--max-iterations', type=int, help='Pagination safety valve per round')
    run.add_argument('--headful', action='store_true', help='Show the browser window')

    publish = sub.add_parser('publish', help='Publish the proof for one round')
    publish.add_argument('--round', type=int, required=True, dest='round_number')

    validate = sub.add_parser('validate', help='Validate a peer proof')
    validate.add_argument('cid', help='Content address of the peer proof')
    validate.add_argument('--sample-delay', type=float, help='Seconds to wait before each live check')
    validate.add_argument('--headful', action='store_true', help='Show the browser window')

    keywords = sub.add_parser('keywords', help='Show the assigned search term')
    keywords.add_argument('--key', type=str, default='', help='Node key sent to the keyword service')

    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    cfg = AgentRunConfig.from_cli_args(args)
    cfg.log_summary()

    if args.command == 'run':
        return asyncio.run(_run_rounds(cfg, args.rounds, args.start_round))
    if args.command == 'publish':
        return asyncio.run(_publish(cfg, args.round_number))
    if args.command == 'validate':
        return asyncio.run(_validate(cfg, args.cid))
    return asyncio.run(_keywords(cfg, args.key))


if __name__ == '__main__':
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print("\n\nInterrupted by user")
        sys.exit(130)
