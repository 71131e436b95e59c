"""Pydantic models and descriptor source for YAML job descriptors.

Provides strong typing and validation for YAML job descriptors and turns
them into the engine's ``JobDefinition`` values.

Usage::

    from conveyor.descriptors.yaml_source import YamlDescriptorSource

    source = YamlDescriptorSource.from_file(".conveyor.yaml")
    job = source.next_job()

Example YAML::

    job:
      name: Build the project using the higgs-boson build system
      containers:
        - display_name: Build the default bit-quark Linux Binaries
          image: registry.example/build-tools/higgs-boson-builder:newest
          script: |
            higgs-boson download internal
            higgs-boson build-deps internal default
            higgs-boson build internal default

A descriptor holds either one ``job`` or a ``jobs`` list. Each container
declares its commands either as a ``script`` or as an explicit ``steps``
list. A script becomes one step per complete shell command: usually one
per non-blank, non-comment line, but a trailing backslash, an open
``if``/``for``/``while``/``until``/``case``/``{`` block, an open quote
or a heredoc keeps the following lines in the same step. Every step runs
in a fresh shell, so ``cd`` and variables do not carry over to the next
step; use ``cd dir && make`` or a ``{ ...; }`` group instead.

Tags:
    conveyor, descriptors, yaml, declarative, config-driven

Doc-Types:
    api-reference
"""

from __future__ import annotations

import re
from collections.abc import Iterator
from pathlib import Path
from typing import Any

import yaml
from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

from conveyor.core.errors import DescriptorError
from conveyor.execution.models import ContainerStage, JobDefinition


_OPERATOR_CHARS = ";&|()<>"
_BLOCK_OPENERS = frozenset({"if", "for", "while", "until", "case", "select", "{"})
_BLOCK_CLOSERS = frozenset({"fi", "done", "esac", "}"})
# Words after which the next word is again a command name.
_LEADS_COMMAND = frozenset({"if", "then", "elif", "else", "while", "until", "do", "{", "!"})
_HEREDOC = re.compile(r"(?<!<)<<-?\s*\\?(['\"]?)([A-Za-z_][A-Za-z0-9_]*)\1")


def _shell_words(text: str) -> list[str] | None:
    """Split shell text into words and operator runs.

    Quoted text stays inside its word verbatim, ``#`` comments are dropped
    and newlines become ``;``. Returns None while a quote is still open.
    """
    words: list[str] = []
    word = ""
    index = 0
    while index < len(text):
        char = text[index]
        if char == "\\":
            word += text[index:index + 2]
            index += 2
        elif char in "'\"`":
            end = index + 1
            while end < len(text) and text[end] != char:
                end += 2 if text[end] == "\\" and char != "'" else 1
            if end >= len(text):
                return None
            word += text[index:end + 1]
            index = end + 1
        elif char == "#" and not word:
            newline = text.find("\n", index)
            index = len(text) if newline < 0 else newline
        elif char.isspace() or char in _OPERATOR_CHARS:
            if word:
                words.append(word)
                word = ""
            end = index + 1
            if char in _OPERATOR_CHARS:
                while end < len(text) and text[end] in _OPERATOR_CHARS:
                    end += 1
                words.append(text[index:end])
            elif char == "\n":
                words.append(";")
            index = end
        else:
            word += char
            index += 1
    if word:
        words.append(word)
    return words


def _open_blocks(text: str) -> int | None:
    """Count compound commands left open in ``text``; None inside a quote."""
    words = _shell_words(text)
    if words is None:
        return None
    depth = 0
    command_start = True
    for word in words:
        if word[0] in _OPERATOR_CHARS:
            # After a redirection the next word is a file name.
            command_start = not any(char in "<>" for char in word)
            continue
        if command_start and word in _BLOCK_OPENERS:
            depth += 1
        elif command_start and word in _BLOCK_CLOSERS:
            depth -= 1
            if depth < 0:
                raise ValueError(f"unexpected {word!r} in script: no open block to close")
        command_start = word in _LEADS_COMMAND
    return depth


def split_script(script: str) -> list[str]:
    """Split a shell script block into steps, one per complete command.

    Blank lines and ``#`` comment lines are dropped, and a line ending in a
    backslash is joined with the next one. Lines are kept together in one
    step while an ``if``/``for``/``while``/``until``/``case``/``{`` block,
    a quoted string or a heredoc is still open.

    Raises:
        ValueError: If the script ends inside an open block or quote, or
            closes a block it never opened.

    Example:
        >>> split_script("make deps\\n\\n# build\\nmake \\\\\\n  all\\n")
        ['make deps', 'make all']
        >>> split_script("if [ -f x ]; then\\n  rm x\\nfi\\nls\\n")
        ['if [ -f x ]; then\\nrm x\\nfi', 'ls']
    """
    commands: list[str] = []
    block: list[str] = []
    code: list[str] = []
    pending = ""
    heredocs: list[str] = []
    depth: int | None = 0

    for raw in script.splitlines():
        if heredocs:
            block.append(raw)
            if raw.strip() == heredocs[0]:
                heredocs.pop(0)
            if not heredocs and depth == 0:
                commands.append("\n".join(block))
                block, code = [], []
            continue

        in_quote = depth is None
        line = raw if in_quote else raw.strip()
        if not in_quote and not pending and (not line or line.startswith("#")):
            continue
        if not in_quote and line.endswith("\\"):
            pending += line[:-1].rstrip() + " "
            continue
        line = pending + line
        pending = ""

        block.append(line)
        code.append(line)
        depth = _open_blocks("\n".join(code))
        if depth is None:
            continue
        heredocs.extend(match[1] for match in _HEREDOC.findall(line))
        if depth == 0 and not heredocs:
            commands.append("\n".join(block))
            block, code = [], []

    if pending.strip():
        block.append(pending.strip())
        code.append(pending.strip())
        depth = _open_blocks("\n".join(code))
    if depth is None:
        raise ValueError("script ends inside an unclosed quotation")
    if depth > 0:
        raise ValueError("script ends inside an unclosed if/for/while/until/case or { block")
    if block:
        # A heredoc left open runs to the end of the script, as in sh.
        commands.append("\n".join(block))
    return commands


def _env_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


class ContainerSpec(BaseModel):
    """One container stage of a job."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    display_name: str = Field(
        default="",
        validation_alias=AliasChoices("display_name", "displayName"),
        description="Human-readable stage name",
    )
    image: str = Field(..., min_length=1, description="Sandbox image reference")
    script: str | None = Field(default=None, description="Shell script, one step per complete command")
    steps: list[str] | None = Field(default=None, description="Explicit step commands")
    env: dict[str, str | int | float | bool] = Field(
        default_factory=dict, description="Environment for every step of the stage"
    )

    @field_validator("image")
    @classmethod
    def _strip_image(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("image must not be blank")
        return value

    @model_validator(mode="after")
    def _one_command_source(self) -> ContainerSpec:
        if (self.script is None) == (self.steps is None):
            raise ValueError("container needs exactly one of 'script' or 'steps'")
        if not self.commands():
            raise ValueError(f"container {self.display_name or self.image!r} declares no commands")
        return self

    def commands(self) -> list[str]:
        if self.script is not None:
            return split_script(self.script)
        return [step.strip() for step in self.steps or [] if step.strip()]

    def to_stage(self) -> ContainerStage:
        """Convert to ContainerStage."""
        return ContainerStage(
            image=self.image,
            steps=tuple(self.commands()),
            display_name=self.display_name,
            env={key: _env_value(value) for key, value in self.env.items()},
        )


class JobSpec(BaseModel):
    """One job: a name and its container stages."""

    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., min_length=1, description="Job display name")
    containers: list[ContainerSpec] = Field(..., min_length=1)

    def to_job(self) -> JobDefinition:
        """Convert to JobDefinition."""
        return JobDefinition(
            name=self.name,
            stages=tuple(container.to_stage() for container in self.containers),
        )


class DescriptorSpec(BaseModel):
    """Top-level descriptor document."""

    model_config = ConfigDict(extra="forbid")

    job: JobSpec | None = None
    jobs: list[JobSpec] | None = None

    @model_validator(mode="after")
    def _one_job_section(self) -> DescriptorSpec:
        if (self.job is None) == (self.jobs is None):
            raise ValueError("descriptor needs exactly one of 'job' or 'jobs'")
        if self.jobs is not None and not self.jobs:
            raise ValueError("'jobs' must list at least one job")
        names = [job.name for job in self.all_jobs()]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise ValueError(f"duplicate job names: {', '.join(duplicates)}")
        return self

    def all_jobs(self) -> list[JobSpec]:
        if self.job is not None:
            return [self.job]
        return list(self.jobs or [])

    @classmethod
    def from_yaml(cls, content: str) -> DescriptorSpec:
        """Parse and validate a YAML document.

        Raises:
            DescriptorError: On YAML syntax errors or schema violations.
        """
        try:
            data = yaml.safe_load(content)
        except yaml.YAMLError as exc:
            raise DescriptorError(f"Invalid YAML: {exc}", cause=exc) from exc
        if not isinstance(data, dict):
            raise DescriptorError("Descriptor must be a YAML mapping")
        try:
            return cls.model_validate(data)
        except ValidationError as exc:
            raise DescriptorError(f"Invalid descriptor: {exc}", cause=exc) from exc

    @classmethod
    def from_yaml_file(cls, path: str | Path) -> DescriptorSpec:
        path = Path(path)
        try:
            content = path.read_text(encoding="utf-8")
        except OSError as exc:
            raise DescriptorError(
                f"Cannot read descriptor {path}: {exc}", cause=exc,
            ).with_context(path=str(path)) from exc
        try:
            return cls.from_yaml(content)
        except DescriptorError as exc:
            raise exc.with_context(path=str(path))


class YamlDescriptorSource:
    """Descriptor source backed by a validated YAML descriptor.

    Yields the descriptor's jobs in document order, or only the job named
    ``job_name`` when given.
    """

    def __init__(self, spec: DescriptorSpec, *, job_name: str | None = None) -> None:
        jobs = spec.all_jobs()
        if job_name is not None:
            jobs = [job for job in jobs if job.name == job_name]
            if not jobs:
                available = ", ".join(repr(job.name) for job in spec.all_jobs())
                raise DescriptorError(f"No job named {job_name!r}. Available: {available}")
        self._jobs: Iterator[JobSpec] = iter(jobs)

    @classmethod
    def from_file(cls, path: str | Path, *, job_name: str | None = None) -> YamlDescriptorSource:
        return cls(DescriptorSpec.from_yaml_file(path), job_name=job_name)

    @classmethod
    def from_text(cls, content: str, *, job_name: str | None = None) -> YamlDescriptorSource:
        return cls(DescriptorSpec.from_yaml(content), job_name=job_name)

    def next_job(self) -> JobDefinition | None:
        spec = next(self._jobs, None)
        if spec is None:
            return None
        return spec.to_job()
