# build_engine/pipeline/orchestrator.py
"""Build orchestrator - turns an uploaded archive into a published site."""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

from build_engine.core.clients import ObjectStore
from build_engine.core.errors import (
    BuildValidationError,
    CommandFailedError,
    ObjectNotFound,
    PartialUploadError,
    TransientInfraError,
    VersionPointerError,
)
from build_engine.core.models import (
    Build,
    BuildJob,
    BuildPhase,
    BuildRequest,
    BuildResult,
    BuildStatus,
    Deployment,
    DeploymentStatus,
    ErrorKind,
)
from build_engine.core.repository import BuildRepository, DeploymentRepository
from build_engine.core.state_machine import BuildStateMachine, DeploymentStateMachine
from build_engine.core.validation import parse_build_payload, validate_build_request
from build_engine.distribution.service import DeploymentService
from build_engine.pipeline import project
from build_engine.pipeline.commands import CommandRunner
from build_engine.pipeline.uploader import ArtifactUploader, deployment_prefix
from build_engine.pipeline.workspace import BuildWorkspace
from build_engine.security.archive import ArchiveLimits, extract_archive
from build_engine.security.discovery import DirectoryReader, LocalDirectoryReader, discover_project

logger = logging.getLogger(__name__)


@dataclass
class PipelineOptions:
    uploads_bucket: str
    base_domain: str
    workspace_root: Path
    archive_limits: ArchiveLimits = field(default_factory=ArchiveLimits)
    discovery_max_depth: int = 3
    install_command: str = "npm install --legacy-peer-deps"
    install_timeout: float = 600
    build_timeout: float = 900

    @classmethod
    def from_settings(cls, settings) -> "PipelineOptions":
        return cls(
            uploads_bucket=settings.uploads_bucket,
            base_domain=settings.base_domain,
            workspace_root=Path(settings.workspace_root),
            archive_limits=ArchiveLimits(
                min_bytes=settings.archive_min_bytes,
                max_entries=settings.archive_max_entries,
                max_uncompressed_bytes=settings.archive_max_uncompressed_bytes,
            ),
            discovery_max_depth=settings.discovery_max_depth,
            install_command=settings.install_command,
            install_timeout=settings.install_timeout_seconds,
            build_timeout=settings.build_timeout_seconds,
        )


@dataclass
class PreparedProject:
    directory: Path
    manifest: Dict[str, Any]
    build_command: str
    warnings: List[str] = field(default_factory=list)


class BuildOrchestrator:
    """
    Runs one build end to end.

    Flow:
    1. Validate the job (raises, nothing is recorded)
    2. Mark the build as building
    3. Create the workspace
    4. Download and extract the archive
    5. Locate and prepare the project
    6. Install dependencies, inject environment, normalise export config, build
    7. Resolve the export directory and upload artifacts
    8. Publish (CDN failures are warnings)
    9. Finalise records and clean up the workspace

    Stage failures come back as a BuildResult carrying the phase and error
    kind; they are not raised.
    """

    def __init__(
        self,
        *,
        builds: BuildRepository,
        deployments: DeploymentRepository,
        store: ObjectStore,
        uploader: ArtifactUploader,
        deployer: DeploymentService,
        options: PipelineOptions,
        runner: Optional[CommandRunner] = None,
        reader_factory: Callable[[Path], DirectoryReader] = lambda root: LocalDirectoryReader(str(root)),
    ):
        self.builds = builds
        self.deployments = deployments
        self.store = store
        self.uploader = uploader
        self.deployer = deployer
        self.options = options
        self.runner = runner or CommandRunner()
        self.reader_factory = reader_factory

    # ---------------------------------------------------------
    # Entry points
    # ---------------------------------------------------------

    def handle_job(self, job: BuildJob) -> BuildResult:
        """Queue entry point. A malformed payload is a non-retryable failure."""
        try:
            request = parse_build_payload(job.payload)
            return self.process_build(request, final_attempt=job.is_final_attempt())
        except BuildValidationError as e:
            logger.error(f"[orchestrator] Job {job.job_id} rejected: {e}")
            return BuildResult.failed(BuildPhase.VALIDATION, str(e), ErrorKind.VALIDATION)

    def process_build(self, request: BuildRequest, *, final_attempt: bool = True) -> BuildResult:
        """
        Raises:
            BuildValidationError: missing job fields. No build is recorded.
        """
        validate_build_request(request)

        build = self._load_or_register(request)
        if build.is_terminal():
            logger.info(
                f"[orchestrator] Build {build.build_id} already {build.status.value}, skipping"
            )
            if build.status == BuildStatus.SUCCESS:
                return BuildResult.ok(None, build.build_path)
            return BuildResult.failed(
                build.error_phase or BuildPhase.UNKNOWN,
                build.error_message or "Build already failed",
                ErrorKind.VALIDATION,
            )

        BuildStateMachine.transition(build, BuildStatus.BUILDING)
        self.builds.update(build)
        logger.info(f"[orchestrator] 🚀 Build {build.build_id} for tenant {build.tenant_id}")

        workspace = None
        try:
            workspace = BuildWorkspace.create(self.options.workspace_root, build.build_id)
            result = self._run_pipeline(request, build, workspace)
        except Exception as e:
            logger.error(f"[orchestrator] Build {build.build_id} crashed: {e}", exc_info=True)
            result = BuildResult.failed(BuildPhase.UNKNOWN, str(e), ErrorKind.INTERNAL)
        finally:
            if workspace is not None:
                workspace.cleanup()

        if not result.success:
            self._record_failure(build, result, final_attempt)

        return result

    # ---------------------------------------------------------
    # Pipeline
    # ---------------------------------------------------------

    def _run_pipeline(
        self,
        request: BuildRequest,
        build: Build,
        workspace: BuildWorkspace,
    ) -> BuildResult:
        config = request.build_config

        _, failure = self._run_stage(BuildPhase.DOWNLOAD, self._download, request, workspace)
        if failure:
            return failure

        _, failure = self._run_stage(
            BuildPhase.EXTRACTION,
            extract_archive,
            workspace.archive_path,
            workspace.source_dir,
            self.options.archive_limits,
        )
        if failure:
            return failure

        prepared, failure = self._run_stage(BuildPhase.VALIDATION, self._prepare_project, request, workspace)
        if failure:
            return failure

        _, failure = self._run_stage(
            BuildPhase.INSTALL,
            project.install_dependencies,
            self.runner,
            prepared.directory,
            command=self.options.install_command,
            timeout=self.options.install_timeout,
        )
        if failure:
            return failure

        _, failure = self._run_stage(BuildPhase.BUILD, self._compile, request, prepared)
        if failure:
            return failure

        export_dir, failure = self._run_stage(
            BuildPhase.VALIDATION,
            project.resolve_export_dir,
            prepared.directory,
            config.output_dir,
        )
        if failure:
            return failure

        _, failure = self._run_stage(
            BuildPhase.UPLOAD,
            self.uploader.upload,
            export_dir,
            build.tenant_id,
            build.build_id,
        )
        if failure:
            return failure

        build.build_path = deployment_prefix(build.tenant_id, build.build_id)
        return self._publish_and_finalize(build)

    def _run_stage(self, phase: BuildPhase, fn, *args, **kwargs) -> Tuple[Any, Optional[BuildResult]]:
        """Run one stage, converting its error into a failed result."""
        logger.info(f"[orchestrator] Phase {phase.value}")
        try:
            return fn(*args, **kwargs), None
        except (BuildValidationError, ObjectNotFound) as e:
            kind, retryable = ErrorKind.VALIDATION, False
            error = e
        except TransientInfraError as e:
            kind, retryable = ErrorKind.TRANSIENT, True
            error = e
        except CommandFailedError as e:
            # A failing compile is retried by the queue; a failing install is not.
            kind, retryable = ErrorKind.COMMAND_FAILED, phase == BuildPhase.BUILD
            error = e
        except PartialUploadError as e:
            kind, retryable = ErrorKind.PARTIAL_UPLOAD, False
            error = e
        except VersionPointerError as e:
            kind, retryable = ErrorKind.VERSION_POINTER, False
            error = e
        except Exception as e:
            logger.error(f"[orchestrator] Unexpected error in {phase.value}: {e}", exc_info=True)
            kind, retryable = ErrorKind.INTERNAL, False
            error = e

        logger.error(f"[orchestrator] ❌ {phase.value} failed ({kind.value}): {error}")
        return None, BuildResult.failed(phase, str(error), kind, retryable=retryable)

    # ---------------------------------------------------------
    # Stages
    # ---------------------------------------------------------

    def _download(self, request: BuildRequest, workspace: BuildWorkspace) -> int:
        size = self.store.download(
            self.options.uploads_bucket,
            request.source_key,
            workspace.archive_path,
        )
        logger.info(f"[orchestrator] Downloaded {request.source_key} ({size} bytes)")
        return size

    def _prepare_project(self, request: BuildRequest, workspace: BuildWorkspace) -> PreparedProject:
        reader = self.reader_factory(workspace.source_dir)
        found = discover_project(reader, self.options.discovery_max_depth)
        if found is None:
            raise BuildValidationError(
                "No package.json or Next.js entry file found in the uploaded archive"
            )

        directory = workspace.source_dir / found.project_dir if found.project_dir else workspace.source_dir
        if found.manifest_found:
            manifest = project.load_manifest(directory)
        else:
            manifest = project.synthesize_manifest(directory, request.tenant_id)

        warnings = project.validate_framework(manifest, request.build_config)
        build_command = project.resolve_build_command(manifest, request.build_config)
        warnings.extend(project.detect_api_routes(directory))

        logger.info(f"[orchestrator] Project root /{found.project_dir}, build command `{build_command}`")
        return PreparedProject(
            directory=directory,
            manifest=manifest,
            build_command=build_command,
            warnings=warnings,
        )

    def _compile(self, request: BuildRequest, prepared: PreparedProject) -> None:
        project.inject_environment(
            prepared.directory,
            tenant_id=request.tenant_id,
            build_id=request.build_id,
            base_domain=self.options.base_domain,
            extra=request.build_config.environment_variables,
        )
        project.ensure_static_export(prepared.directory)
        project.run_build(
            self.runner,
            prepared.directory,
            command=prepared.build_command,
            timeout=self.options.build_timeout,
        )

    def _publish_and_finalize(self, build: Build) -> BuildResult:
        deployment = Deployment.for_build(build)
        self.deployments.create(deployment)

        published = None
        try:
            published = self.deployer.publish(build.tenant_id, build.build_id)
        except VersionPointerError as e:
            logger.warning(f"[orchestrator] Version pointer update failed for {build.build_id}: {e}")
            deployment.notes = f"Version pointer update failed: {e}"
        except Exception as e:
            logger.warning(f"[orchestrator] Publish failed for {build.build_id}: {e}", exc_info=True)
            deployment.notes = f"Publish failed: {e}"

        BuildStateMachine.transition(build, BuildStatus.SUCCESS)
        self.builds.update(build)

        if published is None:
            DeploymentStateMachine.transition(deployment, DeploymentStatus.FAILED)
            deployment.deployment_url = self.deployer.deployment_url(build.tenant_id, build.build_id, None)
        else:
            deployment.invalidation_id = published.invalidation_id
            deployment.deployment_url = published.deployment_url
            if published.warnings:
                deployment.notes = "; ".join(published.warnings)
            DeploymentStateMachine.transition(deployment, DeploymentStatus.ACTIVE)
        self.deployments.update(deployment)

        logger.info(f"[orchestrator] ✅ Build {build.build_id} complete: {deployment.deployment_url}")
        return BuildResult.ok(deployment.deployment_url, build.build_path)

    # ---------------------------------------------------------
    # Records
    # ---------------------------------------------------------

    def _load_or_register(self, request: BuildRequest) -> Build:
        build = self.builds.get(request.build_id)
        if build is not None:
            if build.tenant_id != request.tenant_id:
                raise BuildValidationError(
                    f"Build {request.build_id} belongs to another tenant"
                )
            return build

        build = Build(
            build_id=request.build_id,
            tenant_id=request.tenant_id,
            source_key=request.source_key,
            framework=request.build_config.framework,
            output_dir=request.build_config.output_dir,
        )
        self.builds.create(build)
        return build

    def _record_failure(self, build: Build, result: BuildResult, final_attempt: bool) -> None:
        if result.retryable and not final_attempt:
            # Stays building; the queue will run it again.
            build.error_message = result.error
            build.error_phase = result.phase
            self.builds.update(build)
            logger.warning(
                f"[orchestrator] Build {build.build_id} failed in {result.phase.value}, will retry"
            )
            return

        BuildStateMachine.transition(
            build,
            BuildStatus.FAILED,
            error_message=result.error,
            error_phase=result.phase,
        )
        self.builds.update(build)
        logger.error(f"[orchestrator] Build {build.build_id} failed in {result.phase.value}: {result.error}")
