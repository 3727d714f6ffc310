"""Payloads exchanged with the handler registry that drives devrunner."""

from enum import StrEnum
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

ModuleFormat = Literal["esm", "cjs"]


class BuildMode(StrEnum):
    START = "start"
    DEPLOY = "deploy"


class _Contract(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class NodejsOptions(_Contract):
    """Node.js specific function properties."""

    format: ModuleFormat = "esm"
    install: list[str] = Field(default_factory=list)
    # Raw esbuild option overrides, applied over the computed defaults
    esbuild: dict[str, Any] = Field(default_factory=dict)
    banner: str | None = None
    minify: bool = False
    sourcemap: bool | str | None = None


class FunctionProps(_Contract):
    """Function definition as declared by the project."""

    handler: str
    runtime: str = "nodejs18.x"
    nodejs: NodejsOptions = Field(default_factory=NodejsOptions)


class BuildInput(_Contract):
    function_id: str
    out: Path
    mode: BuildMode = BuildMode.START
    props: FunctionProps


class StartWorkerInput(_Contract):
    """Everything a worker process needs to run a built function.

    The whole payload is forwarded to the worker as its worker data.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )

    function_id: str
    worker_id: str
    out: Path
    handler: str
    runtime: str = "nodejs18.x"
    environment: dict[str, str] = Field(default_factory=dict)

    def worker_data(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


__all__ = [
    "BuildInput",
    "BuildMode",
    "FunctionProps",
    "ModuleFormat",
    "NodejsOptions",
    "StartWorkerInput",
]
