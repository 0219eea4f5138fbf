"""
Tests for the Cloud Sync Validator orchestration
"""

import threading
from pathlib import Path

import pytest

from cloudsync_validator import (
    CloudSyncValidator,
    InMemoryEngine,
    ValidationMode,
    ValidationStatus,
    ValidatorConfig,
)
from cloudsync_validator.errors import (
    NotEncryptedError,
    NotFoundError,
    TransferError,
    UnsupportedProviderError,
    UpstreamError,
)
from cloudsync_validator.main import BatchReport, Credential, MismatchKind, SyncTask
from cloudsync_validator.remote import RemoteDefinitionBuilder

FILES = {
    "notes.txt": b"meeting notes",
    "img/cat.jpg": b"\xff\xd8" + b"c" * 200,
}


def fake_obscure(secret: str) -> str:
    return f"obscured({secret})"


class FakeFetcher:
    """Stands in for TrueNASClient"""

    def __init__(self, tasks, credentials):
        self.tasks = {t.id: t for t in tasks}
        self.credentials = {c.id: c for c in credentials}
        self.fail_listing = False

    async def list_encrypted_task_ids(self):
        if self.fail_listing:
            raise UpstreamError("GET /cloudsync failed: connection refused")
        return [t.id for t in self.tasks.values() if t.encryption]

    async def get_task(self, task_id):
        if task_id not in self.tasks:
            raise NotFoundError(f"Task ID {task_id} not found", status_code=404)
        return self.tasks[task_id]

    async def get_credential(self, credential_id):
        if credential_id not in self.credentials:
            raise NotFoundError(f"Credential ID {credential_id} not found", status_code=404)
        return self.credentials[credential_id]


class RecordingBuilder(RemoteDefinitionBuilder):
    """Keeps every definition it hands out"""

    def __init__(self):
        super().__init__(fake_obscure)
        self.built = []
        self.threads = []

    def build(self, task, credential):
        self.threads.append(threading.get_ident())
        definition = super().build(task, credential)
        self.built.append(definition)
        return definition


def write_tree(root: Path, files) -> str:
    for rel, data in files.items():
        path = root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
    return str(root)


def make_task(task_id: int, local: str, **overrides) -> SyncTask:
    values = dict(
        id=task_id,
        description=f"Backup {task_id}",
        path=local,
        credential_id=10,
        encryption=True,
        encryption_password="pw",
        remote_folder=f"backups/t{task_id}",
    )
    values.update(overrides)
    return SyncTask(**values)


SFTP = Credential(id=10, provider="SFTP", attributes={"host": "box", "user": "u", "pass": "p"})


class TestValidateTask:
    """Tests for single task validation"""

    @pytest.fixture
    def setup(self, tmp_path):
        local = write_tree(tmp_path / "t1", FILES)
        fetcher = FakeFetcher([make_task(1, local)], [SFTP])
        engine = InMemoryEngine({"remote:backups/t1": dict(FILES)})
        builder = RecordingBuilder()
        validator = CloudSyncValidator(fetcher, builder, engine, ValidatorConfig())
        return validator, fetcher, engine, builder

    @pytest.mark.asyncio
    @pytest.mark.parametrize("mode", [ValidationMode.QUICK, ValidationMode.FULL])
    async def test_passing_check(self, setup, mode):
        validator, _, engine, _ = setup

        result = await validator.validate_task(1, mode)

        assert result.passed
        assert result.mode == mode
        assert result.files_checked == 2
        assert engine.calls == [(mode.value, "remote:backups/t1")]

    @pytest.mark.asyncio
    async def test_list_mode(self, setup):
        validator, _, _, _ = setup

        result = await validator.validate_task(1, ValidationMode.LIST)

        assert result.passed
        assert result.entries == ["img/cat.jpg", "notes.txt"]

    @pytest.mark.asyncio
    async def test_sample_mode(self, setup):
        validator, _, _, _ = setup

        result = await validator.validate_task(1, ValidationMode.SAMPLE)

        assert result.passed
        assert result.files_decrypted == 2

    @pytest.mark.asyncio
    async def test_build_runs_off_the_event_loop(self, setup):
        """Building shells out to rclone obscure, so it must not block the loop"""
        validator, _, _, builder = setup

        await validator.validate_task(1, ValidationMode.QUICK)

        assert len(builder.threads) == 1
        assert builder.threads[0] != threading.get_ident()

    @pytest.mark.asyncio
    async def test_sample_empty_remote_passes(self, setup):
        """Nothing to decrypt is not an error"""
        validator, _, engine, _ = setup
        engine.remotes["remote:backups/t1"] = {}

        result = await validator.validate_task(1, ValidationMode.SAMPLE)

        assert result.passed
        assert result.files_decrypted == 0

    @pytest.mark.asyncio
    async def test_mismatch_fails(self, setup):
        """Differences produce a FAILED result, not an exception"""
        validator, _, engine, _ = setup
        engine.remotes["remote:backups/t1"]["notes.txt"] = b"MEETING NOTES"

        result = await validator.validate_task(1, ValidationMode.FULL)

        assert result.status == ValidationStatus.FAILED
        assert result.mismatches[0].kind == MismatchKind.MISMATCH

    @pytest.mark.asyncio
    async def test_definition_closed_after_run(self, setup):
        """The remote definition is released once the task finishes"""
        validator, _, _, builder = setup

        await validator.validate_task(1, ValidationMode.FULL)

        assert len(builder.built) == 1
        assert builder.built[0].closed

    @pytest.mark.asyncio
    async def test_definition_closed_on_error(self, setup):
        validator, _, engine, builder = setup
        engine.unreachable.add("remote:backups/t1")

        with pytest.raises(TransferError):
            await validator.validate_task(1, ValidationMode.QUICK)

        assert builder.built[0].closed

    @pytest.mark.asyncio
    async def test_unknown_task(self, setup):
        validator, _, _, _ = setup

        with pytest.raises(NotFoundError):
            await validator.validate_task(99, ValidationMode.FULL)

    @pytest.mark.asyncio
    async def test_unencrypted_task_rejected(self, setup, tmp_path):
        """Plain tasks have nothing to decrypt"""
        validator, fetcher, engine, builder = setup
        fetcher.tasks[2] = make_task(2, str(tmp_path), encryption=False)

        with pytest.raises(NotEncryptedError):
            await validator.validate_task(2, ValidationMode.FULL)

        assert builder.built == []
        assert engine.calls == []

    @pytest.mark.asyncio
    async def test_unsupported_provider(self, setup):
        validator, fetcher, engine, _ = setup
        fetcher.credentials[10] = Credential(id=10, provider="B2", attributes={})

        with pytest.raises(UnsupportedProviderError):
            await validator.validate_task(1, ValidationMode.LIST)

        assert engine.calls == []


class TestRunAll:
    """Tests for batch validation"""

    @pytest.fixture
    def setup(self, tmp_path):
        tasks = []
        remotes = {}
        for task_id in (1, 2, 3):
            local = write_tree(tmp_path / f"t{task_id}", FILES)
            tasks.append(make_task(task_id, local))
            remotes[f"remote:backups/t{task_id}"] = dict(FILES)
        # Not encrypted, never selected
        tasks.append(make_task(4, str(tmp_path), encryption=False))

        fetcher = FakeFetcher(tasks, [SFTP])
        engine = InMemoryEngine(remotes)
        builder = RecordingBuilder()
        validator = CloudSyncValidator(fetcher, builder, engine, ValidatorConfig())
        return validator, fetcher, engine, builder

    @pytest.mark.asyncio
    async def test_one_failure_in_three(self, setup):
        """Task 2 failing quick leaves the others passing"""
        validator, _, engine, _ = setup
        engine.remotes["remote:backups/t2"]["notes.txt"] += b"+"

        report = await validator.run_all(ValidationMode.QUICK)

        assert report.total == 3
        assert report.passed_count == 2
        assert report.failed_count == 1
        assert not report.passed
        assert report.total_duration_s > 0
        assert report.finished_at is not None
        failed = [r for r in report.results if not r.passed]
        assert failed[0].task_id == 2
        assert failed[0].mismatches[0].kind == MismatchKind.SIZE

    @pytest.mark.asyncio
    async def test_all_pass(self, setup):
        validator, _, _, builder = setup

        report = await validator.run_all(ValidationMode.FULL)

        assert report.passed
        assert [r.task_id for r in report.results] == [1, 2, 3]
        assert all(d.closed for d in builder.built)

    @pytest.mark.asyncio
    async def test_errors_are_isolated(self, setup):
        """A transfer error in one task is recorded and the batch continues"""
        validator, _, engine, _ = setup
        engine.unreachable.add("remote:backups/t1")

        report = await validator.run_all(ValidationMode.FULL)

        assert report.total == 3
        first = report.results[0]
        assert first.status == ValidationStatus.ERROR
        assert first.error_kind == "TransferError"
        assert first.description == "Backup 1"
        assert report.passed_count == 2

    @pytest.mark.asyncio
    async def test_unexpected_exception_isolated(self, setup):
        validator, _, engine, _ = setup

        async def broken_quick(definition, local_path):
            raise RuntimeError("engine bug")

        engine.quick = broken_quick

        report = await validator.run_all(ValidationMode.QUICK)

        assert report.failed_count == 3
        assert {r.error_kind for r in report.results} == {"RuntimeError"}

    @pytest.mark.asyncio
    async def test_listing_failure_propagates(self, setup):
        validator, fetcher, _, _ = setup
        fetcher.fail_listing = True

        with pytest.raises(UpstreamError):
            await validator.run_all(ValidationMode.FULL)

    @pytest.mark.asyncio
    async def test_empty_batch_fails(self, tmp_path):
        """No encrypted tasks is reported, not silently passed"""
        fetcher = FakeFetcher([make_task(1, str(tmp_path), encryption=False)], [SFTP])
        validator = CloudSyncValidator(fetcher, RecordingBuilder(), InMemoryEngine(), ValidatorConfig())

        report = await validator.run_all(ValidationMode.FULL)

        assert report.total == 0
        assert not report.passed

    @pytest.mark.asyncio
    async def test_progress_events(self, setup):
        validator, _, _, _ = setup
        started, completed = [], []

        validator.on("task.started", lambda event, task_id, index, total: started.append((task_id, index, total)))

        async def on_completed(event, result):
            completed.append(result.task_id)

        validator.on("task.completed", on_completed)

        await validator.run_all(ValidationMode.QUICK)

        assert started == [(1, 1, 3), (2, 2, 3), (3, 3, 3)]
        assert completed == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_failing_handler_does_not_abort(self, setup):
        validator, _, _, _ = setup

        def bad_handler(event, **kwargs):
            raise RuntimeError("handler bug")

        validator.on("task.completed", bad_handler)

        report = await validator.run_all(ValidationMode.QUICK)

        assert report.passed


class TestBatchReport:
    """Tests for BatchReport aggregation"""

    def test_empty_report(self):
        report = BatchReport(mode=ValidationMode.QUICK)
        assert report.total == 0
        assert not report.passed

    def test_to_dict(self):
        report = BatchReport(mode=ValidationMode.FULL)
        data = report.to_dict()
        assert data["mode"] == "full"
        assert data["total"] == 0
        assert data["results"] == []
