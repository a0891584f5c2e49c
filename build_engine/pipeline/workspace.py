# build_engine/pipeline/workspace.py

import logging
import re
import shutil
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

_UNSAFE = re.compile(r"[^A-Za-z0-9._-]")


@dataclass
class BuildWorkspace:
    """Per-build scratch directories. Owned by one worker for one build."""

    build_id: str
    temp_dir: Path
    source_dir: Path
    output_dir: Path

    @property
    def archive_path(self) -> Path:
        return self.temp_dir / "source.zip"

    @classmethod
    def create(cls, root: Path, build_id: str) -> "BuildWorkspace":
        temp_dir = Path(root) / _UNSAFE.sub("_", build_id)
        if temp_dir.exists():
            # Left behind by a crashed attempt of the same build.
            shutil.rmtree(temp_dir, ignore_errors=True)

        source_dir = temp_dir / "source"
        output_dir = temp_dir / "output"
        source_dir.mkdir(parents=True)
        output_dir.mkdir(parents=True)

        logger.info(f"[workspace] Created {temp_dir}")
        return cls(
            build_id=build_id,
            temp_dir=temp_dir,
            source_dir=source_dir,
            output_dir=output_dir,
        )

    def cleanup(self) -> bool:
        """Remove the workspace. Failures are logged, never raised."""
        try:
            shutil.rmtree(self.temp_dir)
            logger.info(f"[workspace] Cleaned up {self.temp_dir}")
            return True
        except FileNotFoundError:
            return True
        except OSError as e:
            logger.warning(f"[workspace] Cleanup failed for {self.temp_dir}: {e}")
            return False
