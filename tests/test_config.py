"""
Tests for validator configuration and API records
"""

import os
from pathlib import Path

import pytest

from cloudsync_validator.errors import ConfigError
from cloudsync_validator.main import (
    Credential,
    Mismatch,
    MismatchKind,
    SyncTask,
    ValidationMode,
    ValidationResult,
    ValidationStatus,
    ValidatorConfig,
    load_env_file,
)

ENV_VARS = [
    "TRUENAS_HOST",
    "TRUENAS_API_KEY",
    "TRUENAS_USER",
    "TRUENAS_PASSWORD",
    "TRUENAS_VERIFY_TLS",
    "VALIDATOR_HTTP_TIMEOUT",
    "RCLONE_BINARY",
    "VALIDATOR_CHECKERS",
    "VALIDATOR_TRANSFERS",
    "VALIDATOR_SAMPLE_BYTES",
    "VALIDATOR_LIST_LIMIT",
    "VALIDATOR_LOCK_FILE",
    "VALIDATOR_LOG_DIR",
    "VALIDATOR_MAIL_TO",
    "VALIDATOR_MAIL_COMMAND",
]


@pytest.fixture
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


class TestValidatorConfig:
    """Tests for ValidatorConfig"""

    def test_default_config(self):
        config = ValidatorConfig()
        assert config.checkers == 16
        assert config.transfers == 16
        assert config.sample_bytes == 50 * 1024 * 1024
        assert config.list_limit == 20
        assert not config.verify_tls
        assert config.lock_file == Path("/tmp/validate-cloud-sync.lock")

    def test_config_from_env(self, clean_env):
        clean_env.setenv("TRUENAS_HOST", "nas.lan")
        clean_env.setenv("TRUENAS_API_KEY", "1-key")
        clean_env.setenv("TRUENAS_VERIFY_TLS", "true")
        clean_env.setenv("VALIDATOR_CHECKERS", "8")
        clean_env.setenv("VALIDATOR_LOCK_FILE", "/run/validator.lock")

        config = ValidatorConfig.from_env()

        assert config.host == "nas.lan"
        assert config.api_key == "1-key"
        assert config.verify_tls
        assert config.checkers == 8
        assert config.lock_file == Path("/run/validator.lock")

    def test_invalid_number_in_env(self, clean_env):
        clean_env.setenv("VALIDATOR_CHECKERS", "many")

        with pytest.raises(ConfigError):
            ValidatorConfig.from_env()

    def test_base_url(self):
        assert ValidatorConfig(host="nas.lan").base_url == "https://nas.lan/api/v2.0"
        assert ValidatorConfig(host="http://10.0.0.5/").base_url == "http://10.0.0.5/api/v2.0"

    def test_validate_requires_host(self):
        with pytest.raises(ConfigError, match="TRUENAS_HOST"):
            ValidatorConfig(api_key="k").validate()

    def test_validate_requires_credentials(self):
        with pytest.raises(ConfigError):
            ValidatorConfig(host="nas.lan", user="root").validate()

    def test_validate_accepts_basic_auth(self):
        ValidatorConfig(host="nas.lan", user="root", password="pw").validate()

    def test_validate_rejects_empty_pool(self):
        with pytest.raises(ConfigError):
            ValidatorConfig(host="nas.lan", api_key="k", checkers=0).validate()

    def test_from_yaml(self, clean_env, tmp_path):
        clean_env.setenv("TRUENAS_API_KEY", "from-env")
        path = tmp_path / "validator.yaml"
        path.write_text(
            "host: nas.lan\n"
            "checkers: 4\n"
            "lock_file: /var/run/cloudsync.lock\n"
        )

        config = ValidatorConfig.from_yaml(str(path))

        assert config.host == "nas.lan"
        assert config.checkers == 4
        assert config.api_key == "from-env"
        assert config.lock_file == Path("/var/run/cloudsync.lock")

    def test_from_yaml_unknown_key(self, clean_env, tmp_path):
        path = tmp_path / "validator.yaml"
        path.write_text("host: nas.lan\nworkers: 4\n")

        with pytest.raises(ConfigError, match="workers"):
            ValidatorConfig.from_yaml(str(path))

    def test_from_yaml_missing_file(self, clean_env, tmp_path):
        with pytest.raises(ConfigError):
            ValidatorConfig.from_yaml(str(tmp_path / "missing.yaml"))

    def test_from_yaml_not_a_mapping(self, clean_env, tmp_path):
        path = tmp_path / "validator.yaml"
        path.write_text("- just\n- a list\n")

        with pytest.raises(ConfigError):
            ValidatorConfig.from_yaml(str(path))


class TestLoadEnvFile:
    """Tests for .env loading"""

    def test_loads_file(self, monkeypatch, tmp_path):
        monkeypatch.setenv("TRUENAS_HOST", "placeholder")
        monkeypatch.delenv("TRUENAS_HOST")
        env_file = tmp_path / "cloudsync.env"
        env_file.write_text("TRUENAS_HOST=nas.from.file\n")

        assert load_env_file(str(env_file))
        assert os.environ["TRUENAS_HOST"] == "nas.from.file"

    def test_environment_wins(self, monkeypatch, tmp_path):
        monkeypatch.setenv("TRUENAS_HOST", "nas.from.env")
        env_file = tmp_path / "cloudsync.env"
        env_file.write_text("TRUENAS_HOST=nas.from.file\n")

        load_env_file(str(env_file))

        assert os.environ["TRUENAS_HOST"] == "nas.from.env"

    def test_explicit_missing_file(self, tmp_path):
        with pytest.raises(ConfigError):
            load_env_file(str(tmp_path / "nope.env"))

    def test_default_file_optional(self, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)
        assert load_env_file() is False


class TestRecords:
    """Tests for API record parsing"""

    def test_task_from_api(self):
        task = SyncTask.from_api({
            "id": "4",
            "description": "Photos",
            "path": "/mnt/tank/photos",
            "credentials": {"id": 2},
            "attributes": {"folder": "photos"},
            "encryption": True,
            "filename_encryption": False,
            "encryption_password": "pw",
            "encryption_salt": None,
        })

        assert task.id == 4
        assert task.credential_id == 2
        assert task.remote_folder == "photos"
        assert task.encryption
        assert task.encryption_salt == ""

    def test_task_without_credential(self):
        task = SyncTask.from_api({"id": 5, "credentials": None})
        assert task.credential_id is None
        assert not task.encryption

    def test_credential_from_api(self):
        credential = Credential.from_api({"id": 1, "provider": "SFTP", "attributes": {"host": "h"}})
        assert credential.provider == "SFTP"
        assert credential.attributes == {"host": "h"}

    def test_mismatch_describe(self):
        assert Mismatch("a.txt", MismatchKind.MISSING, side="local").describe() == "a.txt: missing on local"
        assert Mismatch("b.txt", MismatchKind.SIZE, detail="1 vs 2").describe() == "b.txt: size (1 vs 2)"

    def test_result_to_dict(self):
        result = ValidationResult(
            task_id=1,
            mode=ValidationMode.QUICK,
            status=ValidationStatus.FAILED,
            mismatches=[Mismatch("a.txt", MismatchKind.SIZE)],
        )
        data = result.to_dict()

        assert data["mode"] == "quick"
        assert data["status"] == "failed"
        assert data["mismatches"][0] == {"path": "a.txt", "kind": "size", "side": None, "detail": ""}
