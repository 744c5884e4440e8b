"""Build orchestration service.

This module provides the high-level build API:
- Orchestrator.run(): walk an ordered component list to completion
- Skip components that already carry a completion marker
- Per-component failure isolation with log tails
- Best-effort packaging and build history persistence
- Build root status and clean-up helpers
"""

from __future__ import annotations

import logging
import shutil
import time
from collections.abc import Callable, Sequence
from pathlib import Path
from typing import TYPE_CHECKING

import httpx
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from stagebuild.builds.context import BuildContext
from stagebuild.builds.models import BuildRecord
from stagebuild.builds.packaging import (
    PackageMetadata,
    PackagingError,
    build_package,
    debian_version,
    package_name,
)
from stagebuild.builds.patches import apply_patches
from stagebuild.builds.runner import BuildStepError, ComponentLog, run_step
from stagebuild.builds.staging import (
    StagingError,
    install_stage_into_prefix,
    is_stage_empty,
    prepare_stage_dir,
    staged_prefix,
)
from stagebuild.builds.state import CompletionStore, MarkerFileCompletionStore
from stagebuild.builds.strategies import get_adapter
from stagebuild.components.graph import order_components
from stagebuild.db import get_session
from stagebuild.sources.fetch import (
    FetchError,
    IntegrityError,
    cache_path_for,
    clone_with_retry,
    extract_archive,
    fetch_archive,
)
from stagebuild.types import (
    BuildStatus,
    BuildStrategy,
    ComponentOutcome,
    ComponentResult,
    RunSummary,
)

if TYPE_CHECKING:
    from stagebuild.components.schema import ComponentSpec

logger = logging.getLogger(__name__)

# Errors that fail one component without stopping the run
COMPONENT_ERRORS = (FetchError, IntegrityError, BuildStepError, StagingError, OSError)


class Orchestrator:
    """Drives an ordered component list to completion.

    Components are processed one at a time. A component with a completion
    marker is skipped without any fetch or subprocess work. A failing
    component is logged with the tail of its build log and the run moves
    on to the next one.

    Running two orchestrators against the same build root at the same
    time is not supported.
    """

    def __init__(
        self,
        ctx: BuildContext,
        store: CompletionStore | None = None,
        client: httpx.Client | None = None,
        session_factory: sessionmaker[Session] | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            ctx: Immutable build context.
            store: Completion store (marker files in the build root if None).
            client: HTTP client for downloads (created per run if None).
            session_factory: Session factory for build history; history is
                not recorded if None.
            sleep: Sleep function used between retries (injectable for tests).
        """
        self.ctx = ctx
        self.store = store if store is not None else MarkerFileCompletionStore(ctx.build_root)
        self.session_factory = session_factory
        self.sleep = sleep
        self.current: str | None = None
        self._client = client

    def run(self, components: Sequence[ComponentSpec]) -> RunSummary:
        """Build every component that is not already complete.

        Args:
            components: Components in declaration order.

        Returns:
            RunSummary with one result per component.

        Raises:
            DependencyGraphError: If dependency enforcement is on and the
                ``requires`` declarations are unknown or cyclic.
        """
        ordered = order_components(components, enforce=self.ctx.enforce_dependencies)
        self.ctx.ensure_layout()

        manage_client = self._client is None
        client = httpx.Client(follow_redirects=True) if manage_client else self._client
        summary = RunSummary()
        try:
            for component in ordered:
                self.current = component.name
                result = self.build_component(component, client)
                summary.results.append(result)
            self.current = None
        finally:
            if manage_client:
                client.close()

        summary.completed = self.store.completed()
        return summary

    def build_component(
        self, component: ComponentSpec, client: httpx.Client
    ) -> ComponentResult:
        """Process one component: resolve, patch, build, package, mark.

        Args:
            component: Component to build.
            client: HTTP client for downloads.

        Returns:
            ComponentResult describing what happened.
        """
        name = component.name
        if self.store.is_complete(name):
            logger.info("%s already built, skipping", name)
            return ComponentResult(name, component.version, ComponentOutcome.SKIPPED)

        if self.ctx.enforce_dependencies:
            missing = [r for r in component.requires if not self.store.is_complete(r)]
            if missing:
                message = f"required components not complete: {', '.join(missing)}"
                logger.warning("Skipping %s: %s", name, message)
                return ComponentResult(
                    name,
                    component.version,
                    ComponentOutcome.DEPENDENCY_FAILED,
                    message=message,
                    code="dependency_failed",
                )

        log_path = self.ctx.log_path(name)
        record_id = self._record_start(component, log_path)
        logger.info("Processing %s %s", name, component.version)

        with ComponentLog(log_path) as log:
            try:
                package_path = self._build(component, client, log)
            except COMPONENT_ERRORS as e:
                code = getattr(e, "code", "os_error")
                tail = log.tail(self.ctx.log_tail_lines)
                logger.error("%s failed: %s (see %s)", name, e, log_path)
                for line in tail:
                    logger.error("  %s", line)
                self._record_finish(record_id, error_type=code, message=str(e))
                return ComponentResult(
                    name,
                    component.version,
                    ComponentOutcome.FAILED,
                    message=str(e),
                    code=code,
                    log_path=log_path,
                    log_tail=tail,
                )
            except KeyboardInterrupt:
                log.write("\n# Interrupted\n")
                self._record_finish(record_id, error_type="interrupted", message="interrupted")
                raise

        self._record_finish(record_id, package_path=package_path)
        logger.info("%s built successfully", name)
        return ComponentResult(
            name,
            component.version,
            ComponentOutcome.BUILT,
            log_path=log_path,
            package_path=package_path,
        )

    def _build(
        self, component: ComponentSpec, client: httpx.Client, log: ComponentLog
    ) -> Path | None:
        stage_dir = prepare_stage_dir(self.ctx.stage_dir(component.name))

        if component.strategy == BuildStrategy.ASSETS:
            self._stage_assets(component, stage_dir, client, log)
        else:
            source_dir = self._resolve_source(component, client, log)
            if component.patches:
                applied = apply_patches(source_dir, component.patches)
                log.section("patch")
                log.write(f"# Applied {applied} of {len(component.patches)} patches\n")
            adapter = get_adapter(component.strategy)
            adapter.run(component, source_dir, stage_dir, self.ctx, log)

        if is_stage_empty(stage_dir):
            logger.warning("%s installed no files into %s", component.name, stage_dir)

        package_path = None
        if self.ctx.package_artifacts:
            package_path = self._package(component, stage_dir, log)

        if component.install_to_prefix:
            install_stage_into_prefix(stage_dir, self.ctx.prefix)
            self.ctx.prefix.mkdir(parents=True, exist_ok=True)
            env = self.ctx.step_env(component.environment)
            for index, cmd in enumerate(component.post_install, start=1):
                run_step(f"post-install-{index}", list(cmd), self.ctx.prefix, log, env=env)

        self.store.mark_complete(component.name)
        return package_path

    def _resolve_source(
        self, component: ComponentSpec, client: httpx.Client, log: ComponentLog
    ) -> Path:
        source = component.source
        if source is None:
            raise IntegrityError(f"{component.name} has no source", code="missing_source")

        log.section("fetch")
        log.write(f"# Source: {source.url}\n")

        if source.is_git:
            dest = self.ctx.sources_dir / component.name
            return clone_with_retry(
                source.url,
                dest,
                source.ref,
                attempts=self.ctx.fetch_attempts,
                delay=self.ctx.fetch_retry_delay,
                timeout=self.ctx.fetch_timeout,
                log_file=log.handle,
                sleep=self.sleep,
            )

        cache_path = cache_path_for(
            self.ctx.downloads_dir, component.name, component.version, source.archive_filename
        )
        fetched = fetch_archive(
            client,
            source.url,
            cache_path,
            attempts=self.ctx.fetch_attempts,
            delay=self.ctx.fetch_retry_delay,
            timeout=self.ctx.fetch_timeout,
            sleep=self.sleep,
        )
        log.write(
            f"# Archive: {fetched.path} ({fetched.size_bytes} bytes, "
            f"{'cached' if fetched.from_cache else 'downloaded'})\n"
        )
        source_dir = extract_archive(fetched.path, self.ctx.sources_dir, component.name)
        log.write(f"# Extracted to: {source_dir}\n")
        return source_dir

    def _stage_assets(
        self,
        component: ComponentSpec,
        stage_dir: Path,
        client: httpx.Client,
        log: ComponentLog,
    ) -> None:
        log.section("assets")
        root = staged_prefix(stage_dir, self.ctx.prefix)
        for asset in component.assets:
            cache_path = cache_path_for(
                self.ctx.downloads_dir, component.name, component.version, asset.filename
            )
            fetched = fetch_archive(
                client,
                asset.url,
                cache_path,
                attempts=self.ctx.fetch_attempts,
                delay=self.ctx.fetch_retry_delay,
                timeout=self.ctx.fetch_timeout,
                sleep=self.sleep,
            )
            dest_dir = root / asset.destination
            dest_dir.mkdir(parents=True, exist_ok=True)
            shutil.copy2(fetched.path, dest_dir / asset.filename)
            log.write(f"# {asset.url} -> {dest_dir / asset.filename}\n")

    def _package(
        self, component: ComponentSpec, stage_dir: Path, log: ComponentLog
    ) -> Path | None:
        ctx = self.ctx
        if ctx.manifest_description:
            summary = f"{ctx.manifest_description}: {component.name}"
        else:
            summary = f"Component {component.name}"
        meta = PackageMetadata(
            package=package_name(component.name, ctx.package_prefix),
            version=debian_version(component.version),
            architecture=ctx.architecture,
            maintainer=ctx.maintainer,
            installed_size=0,
            description=component.description or summary,
            depends=list(component.depends),
        )
        try:
            return build_package(stage_dir, meta, ctx.debs_dir, log)
        except PackagingError as e:
            logger.warning("Packaging %s failed (build kept): %s", component.name, e)
            return None

    def _record_start(self, component: ComponentSpec, log_path: Path) -> int | None:
        if self.session_factory is None:
            return None
        try:
            with get_session(self.session_factory) as session:
                record = BuildRecord(
                    component=component.name,
                    version=component.version,
                    strategy=component.strategy.value,
                    log_path=str(log_path),
                )
                record.mark_running()
                session.add(record)
                session.flush()
                return record.id
        except SQLAlchemyError as e:
            logger.warning("Could not record build history for %s: %s", component.name, e)
            return None

    def _record_finish(
        self,
        record_id: int | None,
        package_path: Path | None = None,
        error_type: str | None = None,
        message: str | None = None,
    ) -> None:
        if self.session_factory is None or record_id is None:
            return
        try:
            with get_session(self.session_factory) as session:
                record = session.get(BuildRecord, record_id)
                if record is None:
                    return
                if error_type:
                    record.mark_failed(error_type=error_type, message=message)
                else:
                    record.mark_succeeded(str(package_path) if package_path else None)
        except SQLAlchemyError as e:
            logger.warning("Could not update build history record %s: %s", record_id, e)


def list_build_records(
    session: Session,
    component: str | None = None,
    status: BuildStatus | None = None,
    limit: int = 50,
) -> list[BuildRecord]:
    """List build history records, newest first.

    Args:
        session: Database session.
        component: Filter by component name.
        status: Filter by status.
        limit: Maximum results to return.

    Returns:
        List of BuildRecord instances.
    """
    stmt = select(BuildRecord)

    if component is not None:
        stmt = stmt.where(BuildRecord.component == component)
    if status is not None:
        stmt = stmt.where(BuildRecord.status == status.value)

    stmt = stmt.order_by(BuildRecord.id.desc()).limit(limit)

    return list(session.execute(stmt).scalars().all())


def completed_components(build_root: Path) -> list[str]:
    """Names of components with a completion marker in a build root."""
    return MarkerFileCompletionStore(build_root).completed()


def clean_build_root(build_root: Path) -> bool:
    """Delete the entire build root.

    Markers, downloads, sources, stages, packages, logs and history all
    live under the build root, so the next run starts from scratch.

    Returns:
        True if something was removed.
    """
    if not build_root.exists():
        logger.info("Build root %s does not exist, nothing to clean", build_root)
        return False
    logger.info("Removing build root %s", build_root)
    shutil.rmtree(build_root)
    return True


__all__ = [
    "COMPONENT_ERRORS",
    "Orchestrator",
    "clean_build_root",
    "completed_components",
    "list_build_records",
]
