"""Tests for YAML descriptors - parsing, validation and job selection."""

import pytest

from conveyor.core.errors import DescriptorError
from conveyor.descriptors.yaml_source import (
    DescriptorSpec,
    YamlDescriptorSource,
    split_script,
)

MULTI_JOB = """\
jobs:
  - name: lint
    containers:
      - image: python:3.12
        steps: ["ruff check ."]
  - name: test
    containers:
      - displayName: Unit tests
        image: python:3.12
        env:
          CI: true
          WORKERS: 4
        steps:
          - pip install -e .
          - pytest
"""


class TestSplitScript:

    def test_one_command_per_line(self):
        assert split_script("a\nb\n") == ["a", "b"]

    def test_blank_and_comment_lines_dropped(self):
        assert split_script("\n# fetch\nmake deps\n\n  # build\nmake\n") == ["make deps", "make"]

    def test_backslash_continuation(self):
        script = "docker build \\\n  --tag app \\\n  .\necho done\n"
        assert split_script(script) == ["docker build --tag app .", "echo done"]

    def test_indentation_stripped(self):
        assert split_script("    make\n") == ["make"]

    def test_if_block_is_one_step(self):
        script = "if [ -f cache.tar ]; then\n  tar xf cache.tar\nfi\nmake\n"
        assert split_script(script) == [
            "if [ -f cache.tar ]; then\ntar xf cache.tar\nfi",
            "make",
        ]

    def test_nested_loop_is_one_step(self):
        script = (
            "for target in lib app\n"
            "do\n"
            "  while ! make $target; do\n"
            "    sleep 1\n"
            "  done\n"
            "done\n"
            "echo built\n"
        )
        steps = split_script(script)
        assert len(steps) == 2
        assert steps[0].startswith("for target in lib app\ndo")
        assert steps[0].endswith("done\ndone")
        assert steps[1] == "echo built"

    def test_case_block_is_one_step(self):
        script = 'case "$MODE" in\n  fast) make quick;;\n  *) make all;;\nesac\n'
        assert split_script(script) == [
            'case "$MODE" in\nfast) make quick;;\n*) make all;;\nesac'
        ]

    def test_brace_group_keeps_cd(self):
        script = "{\n  cd sub\n  touch marker\n}\ntest -f sub/marker\n"
        assert split_script(script) == ["{\ncd sub\ntouch marker\n}", "test -f sub/marker"]

    def test_heredoc_body_kept_verbatim(self):
        script = "cat > notes.txt <<'EOF'\n  indented\n\n# not a comment\nEOF\necho next\n"
        assert split_script(script) == [
            "cat > notes.txt <<'EOF'\n  indented\n\n# not a comment\nEOF",
            "echo next",
        ]

    def test_multiline_quote_is_one_step(self):
        assert split_script('echo "first\nsecond"\nls\n') == ['echo "first\nsecond"', "ls"]

    def test_single_line_compound_stays_one_step(self):
        script = "if [ $# -gt 0 ]; then echo args; fi\nfor f in *.c; do cc -c $f; done\n"
        assert split_script(script) == [
            "if [ $# -gt 0 ]; then echo args; fi",
            "for f in *.c; do cc -c $f; done",
        ]

    def test_keywords_as_arguments_do_not_open_blocks(self):
        assert split_script("echo if while done\necho 'fi'\n") == [
            "echo if while done",
            "echo 'fi'",
        ]

    @pytest.mark.parametrize(
        "script",
        [
            "if true; then\n  echo inside\n",
            "for x in a b; do\n  echo $x\n",
            "echo done\nfi\n",
            'echo "never closed\n',
        ],
        ids=["open-if", "open-for", "stray-fi", "open-quote"],
    )
    def test_unbalanced_script_rejected(self, script):
        with pytest.raises(ValueError):
            split_script(script)


class TestSingleJob:

    def test_sample_descriptor(self, descriptor_file):
        job = YamlDescriptorSource.from_file(descriptor_file).next_job()

        assert job.name == "Build the project using the higgs-boson build system"
        assert len(job.stages) == 1
        stage = job.stages[0]
        assert stage.display_name == "Build the default bit-quark Linux Binaries"
        assert stage.image.endswith("higgs-boson-builder:newest")
        assert [s.command for s in stage.steps] == ["download", "build-deps", "build"]

    def test_source_yields_one_job_then_none(self, descriptor_file):
        source = YamlDescriptorSource.from_file(descriptor_file)
        assert source.next_job() is not None
        assert source.next_job() is None


class TestMultipleJobs:

    def test_document_order(self):
        source = YamlDescriptorSource.from_text(MULTI_JOB)
        assert source.next_job().name == "lint"
        assert source.next_job().name == "test"

    def test_select_by_name(self):
        job = YamlDescriptorSource.from_text(MULTI_JOB, job_name="test").next_job()
        stage = job.stages[0]

        assert stage.display_name == "Unit tests"
        assert stage.env == {"CI": "true", "WORKERS": "4"}
        assert [s.command for s in stage.steps] == ["pip install -e .", "pytest"]

    def test_unknown_name(self):
        with pytest.raises(DescriptorError, match="deploy"):
            YamlDescriptorSource.from_text(MULTI_JOB, job_name="deploy")


class TestInvalidDescriptors:

    @pytest.mark.parametrize(
        "content",
        [
            "job: [unclosed",
            "- just\n- a list\n",
            "job:\n  name: x\n  containers: []\n",
            "job:\n  name: x\n  containers:\n    - image: a\n",
            "job:\n  name: x\n  containers:\n    - image: a\n      script: make\n      steps: [make]\n",
            "job:\n  name: x\n  containers:\n    - image: a\n      script: '# only a comment'\n",
            "job:\n  name: x\n  containers:\n    - image: ' '\n      script: make\n",
            "job:\n  name: x\n  containers:\n    - image: a\n      script: make\n      privileged: true\n",
            "jobs: []\njob:\n  name: x\n  containers:\n    - image: a\n      script: make\n",
            "job:\n  name: x\n  containers:\n    - image: a\n      script: |\n        if true; then\n          make\n",
            "{}",
        ],
        ids=[
            "bad-yaml",
            "not-a-mapping",
            "no-containers",
            "no-commands",
            "script-and-steps",
            "comment-only-script",
            "blank-image",
            "unknown-key",
            "job-and-jobs",
            "unclosed-if-script",
            "empty",
        ],
    )
    def test_rejected(self, content):
        with pytest.raises(DescriptorError):
            DescriptorSpec.from_yaml(content)

    def test_duplicate_job_names(self):
        content = MULTI_JOB.replace("name: test", "name: lint")
        with pytest.raises(DescriptorError, match="duplicate job names: lint"):
            DescriptorSpec.from_yaml(content)

    def test_missing_file_carries_path(self, tmp_path):
        path = tmp_path / "missing.yaml"
        with pytest.raises(DescriptorError) as exc_info:
            YamlDescriptorSource.from_file(path)
        assert exc_info.value.context.metadata["path"] == str(path)

    def test_invalid_file_carries_path(self, write_descriptor):
        path = write_descriptor("job: 3\n")
        with pytest.raises(DescriptorError) as exc_info:
            DescriptorSpec.from_yaml_file(path)
        assert exc_info.value.context.metadata["path"] == str(path)
