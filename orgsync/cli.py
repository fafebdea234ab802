"""Command line interface for comparing and migrating between environments."""

import argparse
import asyncio
import json
import logging
import sys
from typing import Any, Dict, Optional

from .exceptions import OrgSyncError, describe_error
from .extractors.rest_fetcher import RestMetadataFetcher
from .loaders.rest_writer import RestBulkWriter
from .models.config import EngineConfig
from .models.environment import EnvironmentHandle
from .models.migration import MigrationRequest, MigrationState
from .orchestrator import MigrationOrchestrator
from .services.org_compare import OrgComparer
from .services.relationship_discoverer import RelationshipDiscoverer
from .transport import RestTransport

logger = logging.getLogger(__name__)


def load_job(path: str) -> Dict[str, Any]:
    """Load a JSON job file."""
    with open(path) as f:
        return json.load(f)


def write_output(result: Dict[str, Any], path: Optional[str] = None) -> None:
    text = json.dumps(result, indent=2, default=str)
    if path:
        with open(path, 'w') as f:
            f.write(text)
        logger.info(f"Saved result to {path}")
    else:
        print(text)


def build_components(job: Dict[str, Any]):
    config = EngineConfig.from_dict(job.get("config", {}))
    transport = RestTransport(config)
    return config, RestMetadataFetcher(transport), RestBulkWriter(transport)


def main():
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(
        description="OrgSync - compare metadata and migrate records between environments"
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # Compare metadata
    compare_parser = subparsers.add_parser("compare", help="Compare metadata between two environments")
    _add_common_arguments(compare_parser)

    # Discover relationships
    discover_parser = subparsers.add_parser("discover", help="List child relationships of a root type")
    _add_common_arguments(discover_parser)

    # Pre-flight check
    preflight_parser = subparsers.add_parser("preflight", help="Check field compatibility before migrating")
    _add_common_arguments(preflight_parser)

    # Run migration
    migrate_parser = subparsers.add_parser("migrate", help="Migrate records and their children")
    _add_common_arguments(migrate_parser)
    migrate_parser.add_argument(
        "--preflight", action="store_true", help="Abort when the pre-flight check finds blocking issues"
    )

    args = parser.parse_args()

    # Set up logging
    log_level = logging.DEBUG if getattr(args, "verbose", False) else logging.INFO
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    commands = {
        "compare": run_compare,
        "discover": run_discover,
        "preflight": run_preflight,
        "migrate": run_migrate,
    }
    if args.command not in commands:
        parser.print_help()
        return 1

    try:
        return asyncio.run(commands[args.command](args))
    except OrgSyncError as e:
        logger.error(describe_error(e))
        return 1


def _add_common_arguments(subparser: argparse.ArgumentParser) -> None:
    subparser.add_argument("--job", required=True, help="Path to the JSON job file")
    subparser.add_argument("--output", help="Write the JSON result to this file instead of stdout")
    subparser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")


async def run_compare(args) -> int:
    """Compare metadata types named in the job file."""
    job = load_job(args.job)
    config, fetcher, _ = build_components(job)

    comparer = OrgComparer(fetcher, config)
    report = await comparer.compare(
        EnvironmentHandle.from_dict(job.get("source", {})),
        EnvironmentHandle.from_dict(job.get("target", {})),
        job.get("metadata_types", []),
        job.get("options", {}),
    )

    result = report.to_dict()
    result["summary_stats"] = report.summary_stats()
    write_output(result, args.output)
    return 0


async def run_discover(args) -> int:
    """List child relationships of the job's root type."""
    job = load_job(args.job)
    config, fetcher, _ = build_components(job)

    discoverer = RelationshipDiscoverer(fetcher, config)
    relationships = await discoverer.discover(
        EnvironmentHandle.from_dict(job.get("source", {})), job.get("root_type", "")
    )
    write_output({
        "root_type": job.get("root_type"),
        "relationships": [r.to_dict() for r in relationships],
    }, args.output)
    return 0


def _orchestrator(job: Dict[str, Any]) -> MigrationOrchestrator:
    config, fetcher, writer = build_components(job)
    return MigrationOrchestrator(
        EnvironmentHandle.from_dict(job.get("source", {})),
        EnvironmentHandle.from_dict(job.get("target", {})),
        fetcher,
        writer,
        config,
    )


async def run_preflight(args) -> int:
    """Check field and picklist compatibility for the job's migration."""
    job = load_job(args.job)
    orchestrator = _orchestrator(job)
    request = MigrationRequest.from_dict(job)
    orchestrator.validate(request)

    results = await orchestrator.preflight(request)
    valid = all(not r.blocked for r in results)
    write_output({"valid": valid, "entities": [r.to_dict() for r in results]}, args.output)
    return 0 if valid else 2


async def run_migrate(args) -> int:
    """Run the job's migration."""
    job = load_job(args.job)
    orchestrator = _orchestrator(job)
    request = MigrationRequest.from_dict(job)
    orchestrator.validate(request)

    if args.preflight:
        results = await orchestrator.preflight(request)
        blocked = [r for r in results if r.blocked]
        if blocked:
            for result in blocked:
                for error in result.validation.errors:
                    logger.error(f"{result.entity_type}: {error}")
            write_output({"valid": False, "entities": [r.to_dict() for r in results]}, args.output)
            return 2

    session = await orchestrator.run(request)
    write_output(session.to_dict(), args.output)
    return 0 if session.state == MigrationState.DONE else 1


if __name__ == "__main__":
    sys.exit(main())
