# Copyright (c) Syntropy Systems
"""Sample project generator for performance scenarios."""
from __future__ import annotations

import hashlib
import logging
import shutil
from collections import defaultdict
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from jinja2 import Environment, FileSystemLoader, StrictUndefined

from tempo.errors import ConfigError

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

logger = logging.getLogger(__name__)

SAMPLE_TEMPLATES_DIR = Path(__file__).parent / "templates" / "samples"
BUILD_FILE_SUFFIXES = (".gradle", ".gradle.kts")


@dataclass(frozen=True)
class SampleShape:
    """Shape of a generated multi-project sample."""

    name: str
    projects: int
    source_files: int
    template: str = "java"

    def __post_init__(self) -> None:
        if self.projects < 1:
            msg = f"Sample {self.name} needs at least one project"
            raise ConfigError(msg)
        if self.source_files < 0:
            msg = f"Sample {self.name} cannot have a negative source file count"
            raise ConfigError(msg)


DEFAULT_SHAPES = (
    SampleShape("smallJavaMultiProject", projects=10, source_files=10),
    SampleShape("mediumJavaMultiProject", projects=25, source_files=50),
    SampleShape("largeJavaMultiProject", projects=100, source_files=100),
)


def get_shape(name: str, shapes: Sequence[SampleShape] = DEFAULT_SHAPES) -> SampleShape:
    """Look up a sample shape by name."""
    for shape in shapes:
        if shape.name == name:
            return shape
    known = ", ".join(s.name for s in shapes)
    msg = f"Unknown sample: {name} (known: {known})"
    raise ConfigError(msg)


def _environment(template: str) -> Environment:
    template_dir = SAMPLE_TEMPLATES_DIR / template
    if not template_dir.is_dir():
        msg = f"Unknown sample template: {template}"
        raise ConfigError(msg)
    return Environment(
        loader=FileSystemLoader(str(template_dir)),
        undefined=StrictUndefined,
        keep_trailing_newline=True,
        trim_blocks=True,
        lstrip_blocks=True,
    )


@dataclass(frozen=True)
class _Project:
    name: str
    index: int
    previous: str | None


def generate(
    shape: SampleShape,
    root: Path,
    max_projects: int | None = None,
) -> Path:
    """Render a sample into ``root/<shape.name>``, replacing any previous copy.

    ``max_projects`` caps the project count, for quicker local runs.
    """
    env = _environment(shape.template)
    project_count = shape.projects
    if max_projects is not None:
        project_count = max(1, min(project_count, max_projects))

    sample_dir = root / shape.name
    if sample_dir.exists():
        shutil.rmtree(sample_dir)
    sample_dir.mkdir(parents=True)

    projects = [
        _Project(
            name=f"project{index}",
            index=index,
            previous=f"project{index - 1}" if index > 0 else None,
        )
        for index in range(project_count)
    ]

    (sample_dir / "settings.gradle").write_text(
        env.get_template("settings.gradle.j2").render(shape=shape, projects=projects)
    )
    (sample_dir / "build.gradle").write_text(
        env.get_template("root-build.gradle.j2").render(shape=shape, projects=projects)
    )

    build_template = env.get_template("build.gradle.j2")
    production_template = env.get_template("Production.java.j2")
    test_template = env.get_template("Test.java.j2")

    for project in projects:
        project_dir = sample_dir / project.name
        project_dir.mkdir()
        (project_dir / "build.gradle").write_text(
            build_template.render(shape=shape, project=project)
        )

        package = f"org.example.p{project.index}"
        package_path = Path(*package.split("."))
        main_dir = project_dir / "src" / "main" / "java" / package_path
        test_dir = project_dir / "src" / "test" / "java" / package_path
        main_dir.mkdir(parents=True)
        test_dir.mkdir(parents=True)
        for index in range(shape.source_files):
            (main_dir / f"Production{index}.java").write_text(
                production_template.render(package=package, index=index)
            )
            (test_dir / f"Test{index}.java").write_text(
                test_template.render(package=package, index=index)
            )

    logger.info("Generated sample %s with %d projects", shape.name, project_count)
    return sample_dir


def clean(root: Path, names: Iterable[str]) -> list[Path]:
    """Delete generated samples. Returns the directories removed."""
    removed: list[Path] = []
    for name in names:
        sample_dir = root / name
        if sample_dir.is_dir():
            shutil.rmtree(sample_dir)
            removed.append(sample_dir)
            logger.debug("Removed sample %s", sample_dir)
    return removed


def _sha1(path: Path) -> str:
    digest = hashlib.sha1()  # noqa: S324
    with path.open("rb") as f:
        for chunk in iter(lambda: f.read(65536), b""):
            digest.update(chunk)
    return digest.hexdigest()


def find_identical_build_files(root: Path) -> dict[str, list[Path]]:
    """Group build files under ``root`` by content hash.

    Only groups with more than one file are returned. Duplicates are logged;
    they are not an error.
    """
    by_hash: dict[str, list[Path]] = defaultdict(list)
    for path in sorted(root.rglob("*")):
        if path.is_file() and path.name.endswith(BUILD_FILE_SUFFIXES):
            by_hash[_sha1(path)].append(path)

    duplicates = {digest: paths for digest, paths in by_hash.items() if len(paths) > 1}
    for digest, paths in sorted(duplicates.items()):
        logger.warning(
            "Duplicate build files found for hash '%s': %s",
            digest,
            ", ".join(str(p) for p in paths),
        )
    return duplicates
