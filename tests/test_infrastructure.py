"""
Tests for storage, persistence, configuration, image probing and the error journal.
"""
import sys
import os
import base64

import pytest
import yaml
from botocore.exceptions import ClientError
from PIL import Image

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from config import CONFIG_DIR, load_backend_config, load_generation_policy, load_generation_settings
from schemas import GenerationSettings, GenerationTask, TaskStatus
from utils import image_probe
from utils.error_manager import ErrorManager
from utils.errors import GenerationError, TransientNetworkError, ValidationError
from utils.image_probe import probe_image_size
from utils.project_store import CHARACTER, TASK, JsonFileStore
from utils.storage import StorageManager


# ==========================================================================
# Storage
# ==========================================================================

class FakeS3:
    def __init__(self, error=None):
        self.objects = []
        self.error = error

    def put_object(self, **kwargs):
        if self.error:
            raise self.error
        self.objects.append(kwargs)


def _storage(s3=None):
    return StorageManager(
        account_id="acct",
        access_key="k",
        secret_key="s",
        bucket_name="bucket",
        public_base_url="https://media.test/",
        s3_client=s3 or FakeS3(),
    )


class TestStorage:
    def test_upload_bytes(self):
        s3 = FakeS3()
        url = _storage(s3).upload(b"mp4-bytes", "projects/p1/scenes/s1", "task-1.mp4")
        assert url == "https://media.test/projects/p1/scenes/s1/task-1.mp4"
        assert s3.objects[0]["Bucket"] == "bucket"
        assert s3.objects[0]["Body"] == b"mp4-bytes"
        assert s3.objects[0]["ContentType"] == "video/mp4"

    def test_upload_base64_and_data_url(self):
        s3 = FakeS3()
        storage = _storage(s3)
        encoded = base64.b64encode(b"raw").decode()
        storage.upload(encoded, "a", "one.mp4")
        storage.upload(f"data:image/png;base64,{encoded}", "a", "two.png")
        assert [o["Body"] for o in s3.objects] == [b"raw", b"raw"]
        assert s3.objects[1]["ContentType"] == "image/png"

    def test_generated_filename(self):
        s3 = FakeS3()
        url = _storage(s3).upload(b"x", "characters/c1")
        assert url.startswith("https://media.test/characters/c1/")
        assert url.endswith(".mp4")

    def test_empty_body_rejected(self):
        with pytest.raises(GenerationError):
            _storage().upload(b"", "a", "b.mp4")

    def test_client_error_wrapped(self):
        error = ClientError({"Error": {"Code": "500", "Message": "boom"}}, "PutObject")
        with pytest.raises(GenerationError) as exc:
            _storage(FakeS3(error)).upload(b"x", "a", "b.mp4")
        assert exc.value.stage == "rehost"

    def test_unavailable_without_credentials(self, monkeypatch):
        for name in ("R2_ACCOUNT_ID", "R2_ACCESS_KEY_ID", "R2_SECRET_ACCESS_KEY", "R2_BUCKET_NAME"):
            monkeypatch.delenv(name, raising=False)
        storage = StorageManager()
        assert not storage.available
        with pytest.raises(GenerationError):
            storage.upload(b"x", "a", "b.mp4")


# ==========================================================================
# Persistence
# ==========================================================================

class TestJsonFileStore:
    def test_save_and_load_model(self, tmp_path):
        store = JsonFileStore(str(tmp_path))
        store.save(TASK, "t1", GenerationTask(id="t1", prompt="한국어 프롬프트"))
        record = store.load(TASK, "t1")
        assert record["status"] == "queued"
        assert record["prompt"] == "한국어 프롬프트"
        assert "한국어" in (tmp_path / TASK / "t1.json").read_text(encoding="utf-8")

    def test_update_merges_nested(self, tmp_path):
        store = JsonFileStore(str(tmp_path))
        store.save(CHARACTER, "c1", {"id": "c1", "identity": {"code": "", "status": "pending"}})
        store.update(CHARACTER, "c1", {"identity": {"status": "generating"}})
        assert store.load(CHARACTER, "c1") == {"id": "c1", "identity": {"code": "", "status": "generating"}}

    def test_update_creates_record(self, tmp_path):
        store = JsonFileStore(str(tmp_path))
        store.update(CHARACTER, "c2", {"id": "c2"})
        assert store.load(CHARACTER, "c2") == {"id": "c2"}

    def test_missing_record(self, tmp_path):
        assert JsonFileStore(str(tmp_path)).load(TASK, "nope") is None

    def test_list(self, tmp_path):
        store = JsonFileStore(str(tmp_path))
        assert store.list(TASK) == []
        store.save(TASK, "a", GenerationTask(id="a"))
        store.save(TASK, "b", GenerationTask(id="b", status=TaskStatus.COMPLETED))
        assert sorted(r["id"] for r in store.list(TASK)) == ["a", "b"]


# ==========================================================================
# Configuration
# ==========================================================================

class TestConfig:
    def test_defaults_when_file_missing(self, tmp_path):
        policy = load_generation_policy(str(tmp_path / "missing.yaml"))
        assert policy["platform_max_seconds"] == 15
        assert policy["poll_max_attempts"] == 600

    def test_yaml_overrides(self, tmp_path):
        path = tmp_path / "policy.yaml"
        path.write_text("generation_policy:\n  poll_interval_sec: 1\n  long_tier_seconds: 20\n", encoding="utf-8")
        settings = load_generation_settings(str(path))
        assert settings.poll_interval_sec == 1
        assert settings.long_tier_seconds == 20
        assert settings.short_tier_seconds == 10

    def test_bundled_policy(self):
        settings = load_generation_settings()
        assert settings.chunk_cap_seconds == 13
        assert settings.identity_timestamps == "1,3"

    def test_bundled_policy_keys_are_settings(self):
        """Every key in the bundled YAML maps onto a GenerationSettings field."""
        with open(CONFIG_DIR / "generation_policy.yaml", "r", encoding="utf-8") as f:
            bundled = yaml.safe_load(f)["generation_policy"]
        assert set(bundled) <= set(GenerationSettings.model_fields)

    def test_backend_config_requires_key(self, monkeypatch):
        monkeypatch.setattr("config.load_env", lambda: None)
        monkeypatch.delenv("SORA_API_KEY", raising=False)
        with pytest.raises(RuntimeError):
            load_backend_config()

    def test_backend_config_from_env(self, monkeypatch):
        monkeypatch.setattr("config.load_env", lambda: None)
        monkeypatch.setenv("SORA_API_KEY", "sk-x")
        monkeypatch.setenv("SORA_BASE_URL", "https://gateway.test/")
        config = load_backend_config()
        assert config.api_key == "sk-x"
        assert config.base_url == "https://gateway.test"


# ==========================================================================
# Image probe
# ==========================================================================

class FakeImageResponse:
    def __init__(self, status_code, content=b""):
        self.status_code = status_code
        self.content = content


def _png_bytes(tmp_path, size):
    path = tmp_path / "src.png"
    Image.new("RGB", size).save(path)
    return path.read_bytes()


class TestImageProbe:
    def test_local_file(self, tmp_path):
        path = tmp_path / "portrait.png"
        Image.new("RGB", (90, 160)).save(path)
        assert probe_image_size(str(path)) == (90, 160)

    def test_missing_local_file(self, tmp_path):
        with pytest.raises(ValidationError):
            probe_image_size(str(tmp_path / "nope.png"))

    def test_remote_temp_file_removed(self, tmp_path, monkeypatch):
        data = _png_bytes(tmp_path, (320, 180))
        created = []
        real_mkstemp = image_probe.tempfile.mkstemp

        def tracking_mkstemp(*args, **kwargs):
            fd, path = real_mkstemp(*args, **kwargs)
            created.append(path)
            return fd, path

        monkeypatch.setattr(image_probe.tempfile, "mkstemp", tracking_mkstemp)
        monkeypatch.setattr(image_probe.requests, "get", lambda url, timeout: FakeImageResponse(200, data))

        assert probe_image_size("https://img.test/a.png") == (320, 180)
        assert created and not os.path.exists(created[0])

    def test_remote_http_error_cleans_up(self, monkeypatch):
        created = []
        real_mkstemp = image_probe.tempfile.mkstemp

        def tracking_mkstemp(*args, **kwargs):
            fd, path = real_mkstemp(*args, **kwargs)
            created.append(path)
            return fd, path

        monkeypatch.setattr(image_probe.tempfile, "mkstemp", tracking_mkstemp)
        monkeypatch.setattr(image_probe.requests, "get", lambda url, timeout: FakeImageResponse(404))

        with pytest.raises(ValidationError):
            probe_image_size("https://img.test/a.png")
        assert not os.path.exists(created[0])

    def test_remote_network_error(self, monkeypatch):
        def boom(url, timeout):
            raise image_probe.requests.ConnectionError("reset")

        monkeypatch.setattr(image_probe.requests, "get", boom)
        with pytest.raises(TransientNetworkError):
            probe_image_size("https://img.test/a.png")


# ==========================================================================
# Error journal
# ==========================================================================

class TestErrorManager:
    def test_entries_carry_context(self, error_journal):
        ErrorManager.log_exception(
            "IdentityRegistrar",
            GenerationError("reference rejected", stage="reference_video", character="Anna", task_id="ref-1"),
        )
        entry = ErrorManager.get_recent_errors()[0]
        assert entry["service"] == "IdentityRegistrar"
        assert entry["stage"] == "reference_video"
        assert entry["character"] == "Anna"
        assert entry["task_id"] == "ref-1"

    def test_capped(self, error_journal, monkeypatch):
        monkeypatch.setattr(ErrorManager, "MAX_ENTRIES", 3)
        for i in range(5):
            ErrorManager.log_error("Test", f"error {i}")
        assert len(ErrorManager.get_recent_errors(limit=10)) == 3

    def test_clear(self, error_journal):
        ErrorManager.log_error("Test", "x")
        ErrorManager.clear_logs()
        assert ErrorManager.get_recent_errors() == []
