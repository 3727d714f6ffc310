from __future__ import annotations

import json
from pathlib import Path

import pytest
from devrunner.contracts import BuildInput, BuildMode, FunctionProps
from devrunner.engine.bundler.base import Diagnostic
from devrunner.engine.cache import BuildCache
from devrunner.engine.node import (
    ESM_REQUIRE_SHIM,
    NodeBuilder,
    relative_source_dir,
    resolve_handler_file,
)
from devrunner.engine.results import BuildFailure, BuildSuccess
from devrunner.errors import HandlerNotFoundError

from tests.conftest import FakeBundler, FakePackageManager


def _builder(
    root: Path,
    bundler: FakeBundler | None = None,
    package_manager: FakePackageManager | None = None,
) -> tuple[NodeBuilder, BuildCache, FakeBundler, FakePackageManager]:
    cache = BuildCache(root)
    bundler = bundler or FakeBundler()
    package_manager = package_manager or FakePackageManager()
    return NodeBuilder(root, cache, bundler, package_manager), cache, bundler, package_manager


def _input(
    out: Path,
    *,
    handler: str = "src/api.handler",
    mode: BuildMode = BuildMode.START,
    function_id: str = "fn-api",
    runtime: str = "nodejs18.x",
    **nodejs,
) -> BuildInput:
    props = FunctionProps.model_validate(
        {"handler": handler, "runtime": runtime, "nodejs": nodejs}
    )
    return BuildInput(function_id=function_id, out=out, mode=mode, props=props)


def test_resolve_handler_prefers_typed_sources(project: Path) -> None:
    assert resolve_handler_file(project, "src/api.handler") == Path("src/api.ts")

    (project / "src" / "jobs.js").write_text("export const run = () => 1;\n")
    (project / "src" / "jobs.tsx").write_text("export const run = () => 1;\n")
    assert resolve_handler_file(project, "src/jobs.run") == Path("src/jobs.tsx")


def test_resolve_handler_raises_when_no_source_exists(project: Path) -> None:
    with pytest.raises(HandlerNotFoundError, match='"src/missing.handler"'):
        resolve_handler_file(project, "src/missing.handler")


def test_relative_source_dir_is_empty_outside_root(project: Path) -> None:
    assert relative_source_dir(project, Path("src")) == Path("src")
    assert relative_source_dir(project, Path(".")) == Path()
    assert relative_source_dir(project, Path("../shared")) == Path()
    assert relative_source_dir(project, project.parent / "elsewhere") == Path()


@pytest.mark.asyncio
async def test_esm_build_writes_mjs_and_returns_logical_handler(
    project: Path, tmp_path: Path
) -> None:
    builder, cache, bundler, _ = _builder(project)
    out = tmp_path / "out"

    result = await builder.build(_input(out))

    assert isinstance(result, BuildSuccess)
    assert result.handler == "src/api.handler"
    options = bundler.calls[0]
    assert options.entry_points == ["src/api.ts"]
    assert options.outfile == out / "src" / "api.mjs"
    assert options.format == "esm"
    assert options.target == "esnext"
    assert options.main_fields == ["module", "main"]
    assert options.banner_js is not None
    assert options.banner_js.startswith("\n".join(ESM_REQUIRE_SHIM))
    assert options.sourcemap == "linked"
    assert options.external == []
    assert cache.get("fn-api") == result


@pytest.mark.asyncio
async def test_cjs_build_uses_cjs_extension_and_sdk_external(
    project: Path, tmp_path: Path
) -> None:
    builder, _, bundler, _ = _builder(project)
    out = tmp_path / "out"

    result = await builder.build(
        _input(out, mode=BuildMode.DEPLOY, runtime="nodejs16.x", format="cjs", sourcemap=True)
    )

    assert isinstance(result, BuildSuccess)
    assert result.handler == "src/api.handler"
    options = bundler.calls[0]
    assert options.outfile == out / "src" / "api.cjs"
    assert options.format == "cjs"
    assert options.target == "node14"
    assert options.banner_js is None
    assert options.sourcemap is True
    assert options.external == ["aws-sdk"]


@pytest.mark.asyncio
async def test_cjs_build_skips_sdk_external_for_exempt_runtime(
    project: Path, tmp_path: Path
) -> None:
    builder, _, bundler, _ = _builder(project)

    await builder.build(
        _input(tmp_path / "out", format="cjs", banner="// cjs", esbuild={"external": ["pg"]})
    )

    options = bundler.calls[0]
    assert options.external == ["pg"]
    assert options.banner_js == "// cjs"


@pytest.mark.asyncio
async def test_handler_outside_root_is_written_flat(project: Path, tmp_path: Path) -> None:
    shared = project.parent / "shared"
    shared.mkdir()
    (shared / "util.js").write_text("export const handler = () => 1;\n")
    builder, _, bundler, _ = _builder(project)
    out = tmp_path / "out"

    result = await builder.build(_input(out, handler="../shared/util.handler"))

    assert isinstance(result, BuildSuccess)
    assert bundler.calls[0].outfile == out / "util.mjs"
    assert result.handler == "util.handler"


@pytest.mark.asyncio
async def test_second_build_takes_incremental_path(project: Path, tmp_path: Path) -> None:
    bundler = FakeBundler(
        inputs=[
            frozenset({"src/api.ts", "src/old.ts"}),
            frozenset({"src/api.ts", "src/new.ts"}),
        ],
        incremental=True,
    )
    builder, cache, _, _ = _builder(project, bundler)
    out = tmp_path / "out"

    first = await builder.build(_input(out))
    second = await builder.build(_input(out))

    assert isinstance(first, BuildSuccess)
    assert isinstance(second, BuildSuccess)
    assert len(bundler.calls) == 1
    assert bundler.rebuilds == 1
    assert second.handler == first.handler
    assert cache.should_build("fn-api", project / "src" / "new.ts") is True
    assert cache.should_build("fn-api", project / "src" / "old.ts") is False


@pytest.mark.asyncio
async def test_failed_rebuild_returns_failure_and_keeps_cache(
    project: Path, tmp_path: Path
) -> None:
    bundler = FakeBundler(incremental=True)
    builder, cache, _, _ = _builder(project, bundler)
    first = await builder.build(_input(tmp_path / "out"))

    bundler.fail_with = [Diagnostic(text="Unexpected end of file", file="src/api.ts", line=4, line_text="")]
    second = await builder.build(_input(tmp_path / "out"))

    assert isinstance(second, BuildFailure)
    assert second.errors[0] == "[bold]Unexpected end of file[/bold]"
    assert cache.get("fn-api") == first


@pytest.mark.asyncio
async def test_bundle_failure_is_returned_as_ordered_error_lines(
    project: Path, tmp_path: Path
) -> None:
    bundler = FakeBundler(
        fail_with=[
            Diagnostic(
                text='Could not resolve "left-pad"',
                file="src/api.ts",
                line=1,
                column=7,
                line_text='import pad from "left-pad";',
            ),
            Diagnostic(text="No loader is configured for \".node\" files"),
        ]
    )
    builder, cache, _, _ = _builder(project, bundler)

    result = await builder.build(_input(tmp_path / "out"))

    assert isinstance(result, BuildFailure)
    assert result.errors == [
        '[bold]Could not resolve "left-pad"[/bold]',
        "src/api.ts",
        '[dim]1 │ import pad from "left-pad";[/dim]',
        '[bold]No loader is configured for ".node" files[/bold]',
        "",
        "",
    ]
    assert "fn-api" not in cache


@pytest.mark.asyncio
async def test_deploy_build_installs_trimmed_manifest(project: Path, tmp_path: Path) -> None:
    builder, _, bundler, package_manager = _builder(project)
    out = tmp_path / "out"

    result = await builder.build(_input(out, mode=BuildMode.DEPLOY, install=["sharp"]))

    assert isinstance(result, BuildSuccess)
    assert bundler.calls[0].external == ["sharp"]
    assert json.loads((out / "package.json").read_text()) == {
        "dependencies": {"sharp": "^0.32.0"}
    }
    assert package_manager.installs == [(out, {"dependencies": {"sharp": "^0.32.0"}})]
    assert not (out / "node_modules").exists()


@pytest.mark.asyncio
async def test_deploy_build_surfaces_package_manager_exit_code(
    project: Path, tmp_path: Path
) -> None:
    package_manager = FakePackageManager(exit_code=1, output="ERESOLVE")
    builder, cache, _, _ = _builder(project, package_manager=package_manager)

    result = await builder.build(
        _input(tmp_path / "out", mode=BuildMode.DEPLOY, install=["sharp"])
    )

    assert isinstance(result, BuildFailure)
    assert "exit code 1" in result.errors[0]
    assert "ERESOLVE" in result.errors[0]
    assert "fn-api" not in cache


@pytest.mark.asyncio
async def test_start_build_links_node_modules_for_externals(
    project: Path, tmp_path: Path
) -> None:
    builder, _, _, package_manager = _builder(project)
    out = tmp_path / "out"

    result = await builder.build(_input(out, install=["sharp"]))

    assert isinstance(result, BuildSuccess)
    link = out / "node_modules"
    assert link.is_symlink()
    assert link.resolve() == (project / "node_modules").resolve()
    assert package_manager.installs == []
    assert not (out / "package.json").exists()


@pytest.mark.asyncio
async def test_start_build_without_externals_skips_link(project: Path, tmp_path: Path) -> None:
    builder, _, _, _ = _builder(project)
    out = tmp_path / "out"

    await builder.build(_input(out))

    assert not (out / "node_modules").exists()


@pytest.mark.asyncio
async def test_missing_handler_is_raised(project: Path, tmp_path: Path) -> None:
    builder, _, bundler, _ = _builder(project)

    with pytest.raises(HandlerNotFoundError):
        await builder.build(_input(tmp_path / "out", handler="src/nope.handler"))
    assert bundler.calls == []


@pytest.mark.asyncio
async def test_relative_out_is_anchored_at_project_root(
    project: Path, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    elsewhere = tmp_path / "elsewhere"
    elsewhere.mkdir()
    monkeypatch.chdir(elsewhere)
    builder, _, bundler, _ = _builder(project)

    result = await builder.build(_input(Path("out"), install=["sharp"]))

    assert isinstance(result, BuildSuccess)
    assert result.handler == "src/api.handler"
    assert bundler.calls[0].outfile == project / "out" / "src" / "api.mjs"
    assert (project / "out" / "node_modules").is_symlink()
    assert not (elsewhere / "out").exists()


@pytest.mark.asyncio
async def test_relative_out_deploy_manifest_lands_next_to_bundle(
    project: Path, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    elsewhere = tmp_path / "elsewhere"
    elsewhere.mkdir()
    monkeypatch.chdir(elsewhere)
    builder, _, _, package_manager = _builder(project)

    await builder.build(_input(Path("dist"), mode=BuildMode.DEPLOY, install=["sharp"]))

    assert (project / "dist" / "package.json").is_file()
    assert package_manager.installs[0][0] == project / "dist"
    assert not (elsewhere / "dist").exists()


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("overrides", "message"),
    [
        ({"metafile": False}, "metafile cannot be disabled"),
        ({"format": "umd"}, "format must be one of"),
    ],
)
async def test_invalid_esbuild_overrides_become_failures(
    project: Path, tmp_path: Path, overrides: dict, message: str
) -> None:
    builder, cache, bundler, _ = _builder(project)

    result = await builder.build(_input(tmp_path / "out", esbuild=overrides))

    assert isinstance(result, BuildFailure)
    assert message in result.errors[0]
    assert bundler.calls == []
    assert "fn-api" not in cache


@pytest.mark.asyncio
async def test_deploy_build_with_malformed_manifest_fails(
    project: Path, tmp_path: Path
) -> None:
    (project / "package.json").write_text("{not json")
    builder, cache, _, package_manager = _builder(project)

    result = await builder.build(
        _input(tmp_path / "out", mode=BuildMode.DEPLOY, install=["sharp"])
    )

    assert isinstance(result, BuildFailure)
    assert "Invalid package.json" in result.errors[0]
    assert package_manager.installs == []
    assert "fn-api" not in cache
