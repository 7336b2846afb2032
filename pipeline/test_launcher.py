"""Tests for the default chain wiring, the job runner and the CLI."""

from __future__ import annotations

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock, patch

from pipeline import cli
from pipeline.context import JobContext, StatusKind, StepStatus
from pipeline.launcher import build_default_chain, run_repair_job
from pipeline.step import PipelineStep
from repair.sequencer import SequencerRepair
from shared.config import SequencerConfig, Settings
from shared.schemas import JobDescriptor


def _settings(tmp_path, **overrides) -> Settings:
    return Settings(
        _env_file=None,
        WORKSPACE_PATH=str(tmp_path / "ws"),
        RESULTS_FILE=str(tmp_path / "results.json"),
        **overrides,
    )


class _Done(PipelineStep):
    name = "Done"

    async def business_execute(self) -> StepStatus:
        self.context.has_been_patched = True
        return StepStatus.success(self)


class TestDefaultChain:

    def test_seven_steps_in_order(self, tmp_path):
        context = JobContext(JobDescriptor("https://github.com/acme/calc", "abc", str(tmp_path)))

        head = build_default_chain(
            context,
            _settings(tmp_path, MAX_PATCHES_PER_TOOL=5),
            SequencerConfig(_env_file=None),
            maven=MagicMock(),
            gateway=MagicMock(),
        )

        steps = head.chain()
        assert [s.name for s in steps] == [
            "CloneRepository",
            "CheckoutCommit",
            "BuildProject",
            "GatherTestInformation",
            "ComputeClasspath",
            "ComputeSourceDir",
            "SequencerRepair",
        ]
        repair = steps[-1]
        assert isinstance(repair, SequencerRepair)
        assert repair.max_patches == 5
        assert repair.detector.name == "stacktrace"
        assert repair.classifier.name == "none"


class TestRunRepairJob:

    def test_runs_chain_and_exports(self, tmp_path):
        settings = _settings(tmp_path)
        descriptor = JobDescriptor("https://github.com/acme/calc", "abc", str(tmp_path / "ws"))
        seen: list[str] = []

        context = asyncio.run(run_repair_job(
            descriptor,
            settings,
            SequencerConfig(_env_file=None),
            chain_factory=lambda ctx, s, c: _Done(ctx),
            on_status=lambda status: seen.append(status.kind.value),
        ))

        assert context.has_been_patched
        assert seen == ["SUCCESS"]
        runs = json.loads((tmp_path / "results.json").read_text())["runs"]
        assert runs[0]["final_status"] == "SUCCESS"
        assert runs[0]["project_id"] == "acme-calc-abc"


class TestCli:

    def test_parser(self):
        args = cli.build_parser().parse_args([
            "--repo-url", "https://github.com/acme/calc", "--commit", "abc", "--detection", "localization",
        ])
        assert args.repo_url == "https://github.com/acme/calc"
        assert args.detection == "localization"
        assert args.branch == ""

    def test_main_runs_job(self, tmp_path, capsys):
        context = JobContext(JobDescriptor("https://github.com/acme/calc", "abc", str(tmp_path)))
        context.has_been_patched = True
        runner = AsyncMock(return_value=context)
        loaded = (_settings(tmp_path), SequencerConfig(_env_file=None))

        with patch.object(cli, "load_config", return_value=loaded), \
             patch.object(cli, "configure_logging"), \
             patch.object(cli, "run_repair_job", runner):
            code = cli.main([
                "--repo-url", "https://github.com/acme/calc",
                "--commit", "abc",
                "--detection", "localization",
            ])

        assert code == 0
        descriptor, settings, _config = runner.call_args.args
        assert descriptor.commit == "abc"
        assert descriptor.workspace == str((tmp_path / "ws").resolve())
        assert settings.DETECTION_STRATEGY == "localization"
        assert json.loads(capsys.readouterr().out)["project_id"] == "acme-calc-abc"

    def test_main_without_patch_exits_nonzero(self, tmp_path):
        context = JobContext(JobDescriptor("https://github.com/acme/calc", "abc", str(tmp_path)))
        context.add_step_status(StepStatus(StatusKind.PATCH_NOT_FOUND, _Done(context)))
        loaded = (_settings(tmp_path), SequencerConfig(_env_file=None))

        with patch.object(cli, "load_config", return_value=loaded), \
             patch.object(cli, "configure_logging"), \
             patch.object(cli, "run_repair_job", AsyncMock(return_value=context)):
            assert cli.main(["--repo-url", "https://github.com/acme/calc"]) == 1
