from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from build_engine.core.models import Build


class BuildConfigSchema(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    framework: str = "nextjs"
    build_command: Optional[str] = Field(default=None, alias="buildCommand")
    output_dir: Optional[str] = Field(default=None, alias="outputDir")
    runtime_version: Optional[str] = Field(default=None, alias="runtimeVersion")
    environment_variables: Dict[str, str] = Field(default_factory=dict, alias="environmentVariables")


class BuildSubmitRequest(BaseModel):
    """Same shape as the queue message."""

    model_config = ConfigDict(populate_by_name=True)

    build_id: Optional[str] = Field(default=None, alias="buildId")
    tenant_id: Optional[str] = Field(default=None, alias="tenantId")
    user_id: Optional[str] = Field(default=None, alias="userId")
    storage_key: Optional[str] = Field(default=None, alias="storageKey")
    build_config: BuildConfigSchema = Field(default_factory=BuildConfigSchema, alias="buildConfig")

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


class BuildResponse(BaseModel):
    build_id: str
    tenant_id: str
    version: str
    status: str
    framework: str
    source_key: str
    output_dir: Optional[str] = None
    build_path: Optional[str] = None
    error_message: Optional[str] = None
    error_phase: Optional[str] = None
    created_at: datetime
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    @classmethod
    def from_build(cls, build: Build) -> "BuildResponse":
        return cls(
            build_id=build.build_id,
            tenant_id=build.tenant_id,
            version=build.version,
            status=build.status.value,
            framework=build.framework,
            source_key=build.source_key,
            output_dir=build.output_dir,
            build_path=build.build_path,
            error_message=build.error_message,
            error_phase=build.error_phase.value if build.error_phase else None,
            created_at=build.created_at,
            started_at=build.started_at,
            finished_at=build.finished_at,
        )


class BuildSubmitResponse(BaseModel):
    build: BuildResponse
    job_id: str


class BuildListResponse(BaseModel):
    builds: List[BuildResponse]
