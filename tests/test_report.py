"""SupervisionReport model tests."""

from __future__ import annotations

import io
import json

import pytest

from procdrain.report import DrainSummary, SupervisionReport, _argv_of
from procdrain.runtime.drain import StreamDrain
from procdrain.runtime.supervisor import JoinStatus, ProcessSupervisor


class TestFromSupervisor:
    """Snapshot of a finished supervision session."""

    @pytest.mark.timeout(30)
    def test_finished_session(self, spawn):
        process = spawn("--stdout-bytes", "10", "--exit-code", "1")
        supervisor = ProcessSupervisor(process, quiet=True)
        result = supervisor.wait_for_result()

        report = SupervisionReport.from_supervisor(
            supervisor, outcome="exited", returncode=result.returncode, elapsed=0.12345
        )

        assert report.pid == process.pid
        assert report.returncode == 1
        assert report.elapsed == 0.123
        assert report.state == "finished"
        assert report.argv[-2:] == ["--exit-code", "1"]
        assert [d.name for d in report.drains] == ["stdout", "stderr"]
        assert report.drains[0].bytes_read == 10
        assert report.drains[0].joined is True
        assert report.drains[0].sink_failed is False

        data = json.loads(report.model_dump_json())
        assert data["outcome"] == "exited"
        assert data["drains"][1]["state"] == "finished"

    def test_never_joined(self, spawn):
        process = spawn()
        supervisor = ProcessSupervisor(process, quiet=True)

        report = SupervisionReport.from_supervisor(supervisor, outcome="interrupted")

        assert report.state == "created"
        assert all(d.joined is None for d in report.drains)

    def test_invalid_outcome_rejected(self):
        with pytest.raises(ValueError):
            SupervisionReport(outcome="vanished", state="finished")


class TestModels:

    def test_drain_summary_ignores_extra(self):
        summary = DrainSummary(name="stdout", state="finished", unknown="x")
        assert summary.bytes_read == 0
        assert not hasattr(summary, "unknown")

    def test_drain_summary_sink_failure(self):
        def failing_sink(chunk: bytes) -> None:
            raise OSError("closed")

        drain = StreamDrain("stderr", io.BytesIO(b"boom"), failing_sink)
        drain.run()

        summary = DrainSummary.from_drain(drain, JoinStatus.JOINED)

        assert summary.sink_failed is True
        assert summary.bytes_read == 4
        assert summary.joined is True

    @pytest.mark.parametrize(
        "args, expected",
        [
            (None, []),
            ("ls -l", ["ls -l"]),
            ([b"cat", "file"], ["cat", "file"]),
            (("echo", 1), ["echo", "1"]),
        ],
    )
    def test_argv_of(self, args, expected):
        assert _argv_of(args) == expected
