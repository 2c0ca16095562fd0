"""Code builders.

A builder turns a BuildRequest into archive bytes. Bundling and
minification are external concerns: builders only orchestrate the step and
capture its output.

This module provides:
- CodeBuilder: Protocol every builder implements
- ArchiveBuilder: Deterministic zip of the sources plus function metadata
- CommandBuilder: Runs an external bundler command and archives its output
- validate_archive: Structural check of a built package
- archive_sources: Code files of a built package, for inline embedding
"""

from __future__ import annotations

import io
import json
import subprocess
import tempfile
import zipfile
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

import structlog

from strata_core.errors import BuildError, TransientBuildError
from strata_core.packaging.models import BuildRequest

logger = structlog.get_logger(__name__)

# Fixed timestamp so identical inputs produce identical archives
ZIP_EPOCH = (1980, 1, 1, 0, 0, 0)

FUNCTION_METADATA_FILE = "function.json"
HOST_FILE = "host.json"

HOST_CONFIG: dict[str, Any] = {
    "version": "2.0",
    "extensionBundle": {
        "id": "Microsoft.Azure.Functions.ExtensionBundle",
        "version": "[4.*, 5.0.0)",
    },
}


@runtime_checkable
class CodeBuilder(Protocol):
    """Produces archive bytes for a build request."""

    name: str

    def build(self, request: BuildRequest) -> bytes:
        """Build the package.

        Raises:
            BuildError: On permanent failure.
            TransientBuildError: On failure that may succeed on retry.
            TimeoutError: If the build step overran.
        """
        ...


def function_metadata(request: BuildRequest) -> dict[str, Any]:
    """The function.json document for a request."""
    config = request.configuration
    return {
        "bindings": config.bindings,
        "entryPoint": config.build_options.get("entry_export", "handler"),
        "scriptFile": config.entry_point,
    }


def dependency_manifest(request: BuildRequest) -> tuple[str, str] | None:
    """Runtime-specific dependency file, if the request declares dependencies."""
    config = request.configuration
    if not config.dependencies:
        return None
    if config.runtime == "python":
        lines = [f"{name}{spec}" for name, spec in sorted(config.dependencies.items())]
        return "requirements.txt", "\n".join(lines) + "\n"
    package = {
        "name": request.resource_id.rsplit("/", 1)[-1].lower(),
        "private": True,
        "dependencies": dict(sorted(config.dependencies.items())),
    }
    return "package.json", json.dumps(package, indent=2, sort_keys=True) + "\n"


def write_archive(files: Mapping[str, bytes]) -> bytes:
    """Write ``files`` into a deterministic zip archive."""
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        for path in sorted(files):
            info = zipfile.ZipInfo(path, date_time=ZIP_EPOCH)
            info.compress_type = zipfile.ZIP_DEFLATED
            info.external_attr = 0o644 << 16
            archive.writestr(info, files[path])
    return buffer.getvalue()


def check_source_paths(request: BuildRequest) -> None:
    """Reject source paths that would land outside the package root."""
    for path in request.files:
        if path.startswith("/") or ".." in Path(path).parts:
            raise BuildError(request.resource_id, f"invalid file path '{path}'")


def _package_files(request: BuildRequest, sources: Mapping[str, bytes]) -> dict[str, bytes]:
    files = dict(sources)
    files[FUNCTION_METADATA_FILE] = json.dumps(
        function_metadata(request), indent=2, sort_keys=True
    ).encode("utf-8")
    files[HOST_FILE] = json.dumps(HOST_CONFIG, indent=2, sort_keys=True).encode("utf-8")
    manifest = dependency_manifest(request)
    if manifest is not None:
        files[manifest[0]] = manifest[1].encode("utf-8")
    return files


class ArchiveBuilder:
    """Zips sources with function metadata, byte-for-byte reproducibly."""

    name = "archive"

    def build(self, request: BuildRequest) -> bytes:
        check_source_paths(request)
        sources = {path: content.encode("utf-8") for path, content in request.files.items()}
        return write_archive(_package_files(request, sources))


class CommandBuilder:
    """Runs an external bundler and archives the directory it produces.

    ``command`` items may contain ``{src}``, ``{out}`` and ``{entry}``
    placeholders. A non-zero exit is a permanent failure; failing to launch
    the command is transient.

    Example:
        >>> builder = CommandBuilder(["esbuild", "{src}/{entry}", "--bundle", "--outdir={out}"])
    """

    def __init__(
        self,
        command: Sequence[str],
        *,
        name: str | None = None,
        timeout_seconds: float | None = None,
        env: Mapping[str, str] | None = None,
    ) -> None:
        if not command:
            msg = "command must not be empty"
            raise ValueError(msg)
        self.command = list(command)
        self.name = name or f"command:{Path(command[0]).name}"
        self.timeout_seconds = timeout_seconds
        self.env = dict(env) if env is not None else None
        self._log = logger.bind(component="command_builder", builder=self.name)

    def build(self, request: BuildRequest) -> bytes:
        check_source_paths(request)
        with tempfile.TemporaryDirectory(prefix="strata-build-") as workdir:
            src = Path(workdir) / "src"
            out = Path(workdir) / "out"
            out.mkdir(parents=True)
            for path, content in request.files.items():
                target = src / path
                target.parent.mkdir(parents=True, exist_ok=True)
                target.write_text(content)

            argv = [
                part.format(src=src, out=out, entry=request.configuration.entry_point)
                for part in self.command
            ]
            self._log.debug("build_command_started", resource_id=request.resource_id)
            try:
                completed = subprocess.run(  # noqa: S603
                    argv,
                    cwd=workdir,
                    capture_output=True,
                    text=True,
                    timeout=self.timeout_seconds,
                    env=self.env,
                    check=False,
                )
            except subprocess.TimeoutExpired as e:
                msg = f"Build command exceeded {self.timeout_seconds}s"
                raise TimeoutError(msg) from e
            except OSError as e:
                raise TransientBuildError(
                    request.resource_id,
                    "build command could not be started",
                    internal_details=str(e),
                ) from e

            if completed.returncode != 0:
                raise BuildError(
                    request.resource_id,
                    f"build command exited with status {completed.returncode}",
                    internal_details=completed.stderr[-2000:],
                )

            outputs = {
                path.relative_to(out).as_posix(): path.read_bytes()
                for path in sorted(out.rglob("*"))
                if path.is_file()
            }
            if not outputs:
                raise BuildError(request.resource_id, "build command produced no output")
            return write_archive(_package_files(request, outputs))


def validate_archive(data: bytes, entry_point: str) -> list[str]:
    """Return structural problems of a built package, empty if valid."""
    try:
        with zipfile.ZipFile(io.BytesIO(data)) as archive:
            names = set(archive.namelist())
            corrupt = archive.testzip()
    except zipfile.BadZipFile:
        return ["package is not a valid zip archive"]

    problems: list[str] = []
    if corrupt is not None:
        problems.append(f"archive member '{corrupt}' is corrupt")
    if FUNCTION_METADATA_FILE not in names:
        problems.append(f"missing {FUNCTION_METADATA_FILE}")
    if entry_point not in names:
        problems.append(f"missing entry point '{entry_point}'")
    return problems


def archive_sources(data: bytes) -> dict[str, str] | None:
    """Built code files of a package, without the generated function metadata.

    Returns:
        Member path to text, or None if any member is not UTF-8 text.
    """
    sources: dict[str, str] = {}
    with zipfile.ZipFile(io.BytesIO(data)) as archive:
        for name in sorted(archive.namelist()):
            if name.endswith("/") or name in (FUNCTION_METADATA_FILE, HOST_FILE):
                continue
            try:
                sources[name] = archive.read(name).decode("utf-8")
            except UnicodeDecodeError:
                return None
    return sources
