"""
Upload Test Configuration and Fixtures

Shared fixtures for the upload tests: temp config, sample recordings,
scripted providers and a ready-to-use UploadManager.

To use pytest:
    pytest tests/upload/
"""

import threading
import time
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import pytest

from core.event_bus import ALL_EVENTS, EventBus
from upload.config import UploadConfig
from upload.constants import AccountType
from upload.controllers.upload_manager import UploadManager
from upload.interfaces.provider_interface import (
    ConnectionTestResult,
    CredentialsOnly,
    ProviderInterface,
)


def _poll(predicate: Callable[[], bool], timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


class ScriptedProvider(ProviderInterface):
    """
    Provider whose behaviour is supplied by the test.

    upload_fn is called with the same arguments as upload(); when it is not
    set every upload succeeds immediately.
    """

    def __init__(
        self,
        provider_type: AccountType,
        upload_fn: Optional[Callable[..., Any]] = None,
        auth_result: Any = None,
    ):
        self.provider_type = provider_type
        self.upload_fn = upload_fn
        self.auth_result = auth_result or CredentialsOnly(valid=True)
        self.refresh_result: Optional[Dict[str, Any]] = None
        self.calls: List[Dict[str, Any]] = []
        self._lock = threading.Lock()

    def check_auth(self, credentials, config):
        return self.auth_result

    def test_connection(self, credentials, config):
        return ConnectionTestResult(True, "Scripted connection successful")

    def upload(
        self,
        credentials,
        config,
        file_path,
        metadata,
        on_progress=None,
        cancel_token=None,
    ):
        with self._lock:
            self.calls.append(
                {
                    "credentials": dict(credentials),
                    "config": dict(config),
                    "file_path": file_path,
                    "metadata": dict(metadata),
                },
            )
        if self.upload_fn:
            return self.upload_fn(
                credentials, config, file_path, metadata, on_progress, cancel_token,
            )
        return {"success": True, "location": f"fake://{Path(file_path).name}"}

    def refresh_credentials(self, credentials):
        return self.refresh_result

    @property
    def uploaded_paths(self) -> List[str]:
        with self._lock:
            return [call["file_path"] for call in self.calls]


# =============================================================================
# CONFIG AND FILE FIXTURES
# =============================================================================


@pytest.fixture
def upload_config(tmp_path):
    """
    Provide an UploadConfig writing into a temp directory.

    Usage:
        def test_something(upload_config):
            upload_config.set("max_concurrent_uploads", 1, save=False)
    """
    config = UploadConfig(config_path=tmp_path / "upload.yaml", save_default=False)
    config.set("data_dir", str(tmp_path / "data"), save=False)
    return config


@pytest.fixture
def make_video(tmp_path):
    """
    Factory creating fake video files.

    Usage:
        def test_upload(make_video):
            path = make_video("clip.mp4", size=2048)
    """
    videos_dir = tmp_path / "videos"
    videos_dir.mkdir(exist_ok=True)

    def _make(name: str = "clip.mp4", size: int = 1024) -> str:
        path = videos_dir / name
        path.write_bytes(b"\0" * size)
        return str(path)

    return _make


@pytest.fixture
def video_file(make_video):
    """Single 1 KB fake video"""
    return make_video()


@pytest.fixture
def recording(tmp_path):
    """
    Provide a complete recording with all sidecar files.

    Layout:
        run.mp4, run.json, run_main_thumb.jpg, run_thumbs/evt_1..3.jpg

    Usage:
        def test_direct(recording):
            video_path = recording["video"]
    """
    base = tmp_path / "recording"
    base.mkdir()

    video = base / "run.mp4"
    video.write_bytes(b"v" * 4096)

    events_json = base / "run.json"
    events_json.write_text('{"events": [{"id": "evt_1"}]}')

    main_thumb = base / "run_main_thumb.jpg"
    main_thumb.write_bytes(b"t" * 256)

    thumbs_dir = base / "run_thumbs"
    thumbs_dir.mkdir()
    thumbs = []
    for index in range(1, 4):
        thumb = thumbs_dir / f"evt_{index}.jpg"
        thumb.write_bytes(b"e" * 128)
        thumbs.append(thumb)

    return {
        "video": str(video),
        "events_json": events_json,
        "main_thumb": main_thumb,
        "thumbs": thumbs,
    }


# =============================================================================
# MANAGER FIXTURES
# =============================================================================


@pytest.fixture
def event_tracker():
    """
    Record every event published on an EventBus.

    Usage:
        def test_events(event_tracker):
            bus = EventBus()
            event_tracker.attach(bus)
            ...
            assert event_tracker.of_type("upload-queued")
    """

    class EventTracker:
        def __init__(self):
            self.events: List[tuple] = []
            self._lock = threading.Lock()

        def attach(self, bus: EventBus) -> None:
            bus.subscribe(ALL_EVENTS, self.track)

        def track(self, event_type: str, data: Any) -> None:
            with self._lock:
                self.events.append((event_type, data))

        def of_type(self, event_type: str) -> List[Any]:
            with self._lock:
                return [data for name, data in self.events if name == event_type]

        def names(self) -> List[str]:
            with self._lock:
                return [name for name, _ in self.events]

    return EventTracker()


@pytest.fixture
def providers():
    """
    Provide one ScriptedProvider per account type.

    Usage:
        def test_queue(providers):
            providers[AccountType.S3].upload_fn = my_upload
    """
    return {account_type: ScriptedProvider(account_type) for account_type in AccountType}


@pytest.fixture
def manager_factory(upload_config, providers, event_tracker):
    """
    Build initialized UploadManagers; every one is shut down after the test.

    Usage:
        def test_manager(manager_factory):
            manager = manager_factory()
    """
    created = []

    def _create(config: Optional[UploadConfig] = None, registry=None) -> UploadManager:
        bus = EventBus()
        event_tracker.attach(bus)
        manager = UploadManager(
            config=config or upload_config,
            providers=registry if registry is not None else providers,
            event_bus=bus,
        )
        manager.initialize()
        created.append(manager)
        return manager

    yield _create

    for manager in created:
        manager.shutdown(timeout=2.0)


@pytest.fixture
def manager(manager_factory):
    """Initialized UploadManager backed by scripted providers"""
    return manager_factory()


@pytest.fixture
def s3_account(manager):
    """S3 account registered on the manager fixture"""
    return manager.add_account(
        "s3",
        "Backups",
        {"bucket": "videos", "region": "us-east-1"},
        {"access_key_id": "AKIA", "secret_access_key": "secret"},
    )


# =============================================================================
# HELPER FIXTURES
# =============================================================================


@pytest.fixture
def wait_for():
    """
    Poll a predicate until it holds (worker threads finish asynchronously).

    Usage:
        def test_async(manager, wait_for):
            assert wait_for(lambda: not manager.active_uploads)
    """
    return _poll


@pytest.fixture
def scripted_provider():
    """
    Factory for extra ScriptedProvider instances.

    Usage:
        def test_registry(scripted_provider):
            provider = scripted_provider(AccountType.S3, upload_fn=fail)
    """
    return ScriptedProvider
