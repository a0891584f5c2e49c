# build_engine/pipeline/project.py
"""Next.js project preparation: manifest, environment, export config, commands."""

import json
import logging
import os
import re
from pathlib import Path
from typing import Dict, List, Optional

from build_engine.core.errors import (
    BuildValidationError,
    CommandFailedError,
    TransientInfraError,
)
from build_engine.core.models import BuildConfig
from build_engine.pipeline.commands import CommandResult, CommandRunner

logger = logging.getLogger(__name__)

MANIFEST_NAME = "package.json"
ENV_FILE_NAME = ".env.local"
SUPPORTED_FRAMEWORKS = ("nextjs", "next")
DEFAULT_BUILD_COMMAND = "next build"

CONFIG_FILE_NAMES = ("next.config.js", "next.config.mjs", "next.config.ts")
EXPORT_MARKERS = ("index.html", "_next", "static")
TRANSIENT_INSTALL_PATTERNS = ("ECONNRESET", "ETIMEDOUT", "EAI_AGAIN", "network")

_EXPORT_OUTPUT = re.compile(r"""output\s*:\s*['"]export['"]""")

STATIC_EXPORT_CONFIG = """/** @type {import('next').NextConfig} */
const nextConfig = {
  output: 'export',
  trailingSlash: true,
  images: {
    unoptimized: true,
  },
};

module.exports = nextConfig;
"""


# ---------------------------------------------------------
# Manifest
# ---------------------------------------------------------

def load_manifest(project_dir: Path) -> Dict:
    path = project_dir / MANIFEST_NAME
    try:
        with open(path, "r", encoding="utf-8") as f:
            manifest = json.load(f)
    except FileNotFoundError as e:
        raise BuildValidationError(f"{MANIFEST_NAME} not found in {project_dir}") from e
    except json.JSONDecodeError as e:
        raise BuildValidationError(f"Invalid {MANIFEST_NAME}: {e}") from e

    if not isinstance(manifest, dict):
        raise BuildValidationError(f"Invalid {MANIFEST_NAME}: expected an object")
    return manifest


def synthesize_manifest(project_dir: Path, tenant_id: str) -> Dict:
    """Write a minimal Next.js manifest for uploads that shipped none."""
    manifest = {
        "name": f"site-{tenant_id}",
        "version": "1.0.0",
        "private": True,
        "scripts": {
            "dev": "next dev",
            "build": DEFAULT_BUILD_COMMAND,
            "start": "next start",
        },
        "dependencies": {
            "next": "latest",
            "react": "latest",
            "react-dom": "latest",
        },
    }

    with open(project_dir / MANIFEST_NAME, "w", encoding="utf-8") as f:
        json.dump(manifest, f, indent=2)

    logger.warning(f"[project] Synthesized {MANIFEST_NAME} in {project_dir}")
    return manifest


def validate_framework(manifest: Dict, config: BuildConfig) -> List[str]:
    """Return warnings. A missing framework dependency is not fatal."""
    warnings = []

    dependencies = {}
    dependencies.update(manifest.get("dependencies") or {})
    dependencies.update(manifest.get("devDependencies") or {})

    if config.framework in SUPPORTED_FRAMEWORKS and "next" not in dependencies:
        warnings.append("'next' is not declared in dependencies")

    for warning in warnings:
        logger.warning(f"[project] {warning}")

    return warnings


def resolve_build_command(manifest: Dict, config: BuildConfig) -> str:
    """
    Explicit buildCommand, then the manifest's build script, then the
    framework default. Unknown frameworks without a script are rejected.
    """
    if config.build_command:
        return config.build_command

    script = (manifest.get("scripts") or {}).get("build")
    if script:
        return script

    if config.framework in SUPPORTED_FRAMEWORKS:
        logger.info(f"[project] No build script, defaulting to `{DEFAULT_BUILD_COMMAND}`")
        return DEFAULT_BUILD_COMMAND

    raise BuildValidationError(
        f"No build command for unsupported framework {config.framework!r}"
    )


def detect_api_routes(project_dir: Path) -> List[str]:
    warnings = []
    for candidate in ("pages/api", "app/api", "src/pages/api", "src/app/api"):
        if (project_dir / candidate).is_dir():
            warnings.append(f"{candidate} will not work in a static export")
            logger.warning(f"[project] API routes found in {candidate}, they will not be exported")
    return warnings


# ---------------------------------------------------------
# Build-time environment
# ---------------------------------------------------------

def inject_environment(
    project_dir: Path,
    *,
    tenant_id: str,
    build_id: str,
    base_domain: str,
    extra: Optional[Dict[str, str]] = None,
) -> Path:
    """
    Merge tenant/build values into .env.local.

    Existing lines for other keys (and comments) are preserved in order;
    keys we own are overwritten in place or appended.
    """
    values = {
        "NEXT_PUBLIC_TENANT_ID": tenant_id,
        "NEXT_PUBLIC_BUILD_ID": build_id,
        "NEXT_PUBLIC_BASE_DOMAIN": base_domain,
    }
    values.update(extra or {})

    path = project_dir / ENV_FILE_NAME
    lines = path.read_text(encoding="utf-8").splitlines() if path.exists() else []

    pending = dict(values)
    merged = []
    for line in lines:
        key = line.split("=", 1)[0].strip() if "=" in line else None
        if key and not line.lstrip().startswith("#") and key in pending:
            merged.append(f"{key}={pending.pop(key)}")
        else:
            merged.append(line)

    for key, value in pending.items():
        merged.append(f"{key}={value}")

    path.write_text("\n".join(merged) + "\n", encoding="utf-8")
    logger.info(f"[project] Wrote {len(values)} variables to {ENV_FILE_NAME}")
    return path


def ensure_static_export(project_dir: Path) -> bool:
    """
    Make the project emit a static export. Returns True if anything changed.

    A config that already declares export output is left untouched; any
    other config is moved aside to ``<name>.bak``.
    """
    existing = [project_dir / name for name in CONFIG_FILE_NAMES if (project_dir / name).exists()]

    for path in existing:
        if _EXPORT_OUTPUT.search(path.read_text(encoding="utf-8", errors="replace")):
            logger.info(f"[project] {path.name} already configured for static export")
            return False

    for path in existing:
        backup = path.with_name(path.name + ".bak")
        os.replace(path, backup)
        logger.info(f"[project] Backed up {path.name} to {backup.name}")

    (project_dir / "next.config.js").write_text(STATIC_EXPORT_CONFIG, encoding="utf-8")
    logger.info("[project] Wrote static export next.config.js")
    return True


def build_environment(project_dir: Path) -> Dict[str, str]:
    bin_dir = project_dir / "node_modules" / ".bin"
    return {
        "PATH": f"{bin_dir}{os.pathsep}{os.environ.get('PATH', '')}",
        "NODE_ENV": "production",
    }


# ---------------------------------------------------------
# Commands
# ---------------------------------------------------------

def _looks_transient(result: CommandResult) -> bool:
    output = result.tail(8000)
    return any(pattern in output for pattern in TRANSIENT_INSTALL_PATTERNS)


def install_dependencies(
    runner: CommandRunner,
    project_dir: Path,
    *,
    command: str,
    timeout: float,
) -> CommandResult:
    """Install with one in-stage retry when the package tool hit the network."""
    result = runner.run(command, cwd=project_dir, timeout=timeout)

    if not result.ok and _looks_transient(result):
        logger.warning("[project] Install failed with a network error, retrying once")
        result = runner.run(command, cwd=project_dir, timeout=timeout)
        if not result.ok and _looks_transient(result):
            raise TransientInfraError(f"Dependency install failed: {result.tail(500)}")

    if not result.ok:
        raise CommandFailedError(
            f"Dependency install failed: {result.tail(500)}", result.returncode
        )

    return result


def run_build(
    runner: CommandRunner,
    project_dir: Path,
    *,
    command: str,
    timeout: float,
) -> CommandResult:
    result = runner.run(
        command,
        cwd=project_dir,
        timeout=timeout,
        env=build_environment(project_dir),
    )
    if not result.ok:
        raise CommandFailedError(
            f"Build command `{command}` exited with {result.returncode}: {result.tail(500)}",
            result.returncode,
        )
    return result


# ---------------------------------------------------------
# Export
# ---------------------------------------------------------

def resolve_export_dir(project_dir: Path, output_dir: Optional[str] = None) -> Path:
    """
    First candidate that exists, is non-empty and holds a known marker:
    explicit outputDir, then ``out``, then ``.next``.
    """
    candidates = [c for c in (output_dir, "out", ".next") if c]
    root = project_dir.resolve()

    for candidate in candidates:
        path = (project_dir / candidate).resolve()
        if path != root and root not in path.parents:
            continue
        if not path.is_dir():
            continue

        children = {child.name for child in path.iterdir()}
        if not children:
            logger.warning(f"[project] Export candidate {candidate} is empty")
            continue

        if any(marker in children for marker in EXPORT_MARKERS):
            logger.info(f"[project] Using export directory {candidate}")
            return path

        logger.warning(f"[project] Export candidate {candidate} has no index.html or assets")

    raise BuildValidationError(
        f"No static export found (checked: {', '.join(candidates)})"
    )
