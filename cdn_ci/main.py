"""CI orchestrator: resolve library versions, stage, commit, sync and purge."""

from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path

from loguru import logger

from cdn_ci.config import CdnConfig, load_cdn_config
from cdn_content_builder.adapters.github_backend import GithubPublishBackend
from cdn_content_builder.adapters.github_source import GithubSourceProvider, make_github_client
from cdn_content_builder.adapters.storage import HttpPurgeInvalidator, LocalMirrorSync
from cdn_content_builder.core.exceptions import CdnBuildError, ConfigError
from cdn_content_builder.pipeline import LibrarySource, PipelineOptions, PipelineResult, run_pipeline


def configure_logging(verbose: bool = False) -> None:
    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if verbose else "INFO")


def _report(result: PipelineResult) -> None:
    if result.changes is None:
        logger.info(f"Dry run finished ({len(result.staged)} versions would be staged)")
    elif result.published:
        logger.info(
            f"Published {result.commit_sha[:8]}: {len(result.staged)} versions staged, "
            f"{len(result.invalidated)} paths invalidated"
        )
    else:
        logger.info("No content changes to publish")


def orchestrate(
    config: CdnConfig,
    force: bool = False,
    refresh_content: bool = False,
    dry_run: bool = False,
) -> PipelineResult:
    token = os.environ.get(config.publish.token_env)
    if not token and not dry_run:
        raise ConfigError(f"publish requested but {config.publish.token_env} is not set")

    options = PipelineOptions(
        cdn_version=config.version,
        content_dir=config.content_dir,
        work_dir=config.work_dir,
        branch=config.publish.branch,
        manifest_name=config.manifest_name,
        commit_message=config.publish.message,
        force=force,
        refresh_content=refresh_content,
        dry_run=dry_run,
        max_workers=config.max_workers,
    )

    with make_github_client(token) as client:
        libraries = [
            LibrarySource(
                id=library.id,
                provider=GithubSourceProvider.from_source(library.source, client=client),
                tracked_branch=library.branch,
            )
            for library in config.libraries
        ]
        backend = GithubPublishBackend(
            config.publish.owner,
            config.publish.repo,
            client,
            committer=dict(config.publish.committer) if config.publish.committer else None,
        )
        storage = LocalMirrorSync(config.mirror_dir) if config.mirror_dir else None
        invalidator = None
        if config.invalidation is not None:
            invalidator = HttpPurgeInvalidator(
                config.invalidation.endpoint,
                token=os.environ.get(config.invalidation.token_env),
            )

        return run_pipeline(libraries, backend, options, storage=storage, invalidator=invalidator)


def main(argv: list[str] | None = None) -> int:
    p = argparse.ArgumentParser(description="CDN content publish orchestrator")
    p.add_argument(
        "--config",
        type=Path,
        default=Path(__file__).parent / "cdn.yml",
        help="cdn.yml path",
    )
    p.add_argument("--force", action="store_true", help="Re-stage every publishable version")
    p.add_argument(
        "--refresh-content",
        action="store_true",
        help="Re-download the published tree before resolving",
    )
    p.add_argument("--dry-run", action="store_true", help="Resolve versions only, do not stage or publish")
    p.add_argument("--verbose", action="store_true", help="Enable debug logging")

    args = p.parse_args(argv)
    configure_logging(args.verbose)

    try:
        config = load_cdn_config(args.config)
        result = orchestrate(
            config,
            force=args.force,
            refresh_content=args.refresh_content,
            dry_run=args.dry_run,
        )
    except CdnBuildError as exc:
        logger.error(f"Stage '{exc.stage}' failed: {exc}")
        return 1

    _report(result)
    return 0


if __name__ == "__main__":
    sys.exit(main())
