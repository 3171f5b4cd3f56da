"""
Mock Provider Implementation

Simulated upload provider for development and tests.
Stands in for any account type without touching the network.
"""

import logging
import os
import random
import time
from typing import Any, Callable, Dict, List, Optional
from uuid import uuid4

from upload.constants import AccountType, ErrorCode
from upload.interfaces.provider_interface import (
    CancellationToken,
    ConnectionTestResult,
    CredentialsOnly,
    ProgressCallback,
    ProgressUpdate,
    ProviderInterface,
    UploadError,
)


class MockProvider(ProviderInterface):
    """
    Mock upload provider for testing.

    This simulates upload timing and progress without uploading.
    Useful for:
    - Unit tests of the upload manager
    - Development without cloud credentials (factory "mock" mode)
    - Dry runs of the upload queue
    """

    display_name = "Mock Provider"

    def __init__(
        self,
        provider_type: AccountType = AccountType.S3,
        simulate_timing: bool = True,
        fail_rate: float = 0.0,
        steps: int = 10,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize mock provider.

        Args:
            provider_type: Account type this instance pretends to serve
            simulate_timing: If True, sleep proportionally to the file size
            fail_rate: Probability of upload failure (0.0 to 1.0)
            steps: Number of progress reports per upload
            sleep: Injected for tests

        Example:
            # Fast mock for unit tests
            provider = MockProvider(simulate_timing=False)

            # Test error handling
            provider = MockProvider(fail_rate=0.5)
        """
        self.logger = logging.getLogger(__name__)
        self.provider_type = AccountType(provider_type)
        self.simulate_timing = simulate_timing
        self.fail_rate = fail_rate
        self.steps = max(steps, 1)
        self.sleep = sleep

        # Track upload history for testing
        self.upload_history: List[Dict[str, Any]] = []

        self.logger.info(
            f"Mock Provider initialized for {self.provider_type.value} "
            f"(timing: {simulate_timing}, fail_rate: {fail_rate})",
        )

    def check_auth(
        self,
        credentials: Dict[str, Any],
        config: Dict[str, Any],
    ) -> CredentialsOnly:
        """Any credentials map is accepted"""
        return CredentialsOnly(valid=True)

    def test_connection(
        self,
        credentials: Dict[str, Any],
        config: Dict[str, Any],
    ) -> ConnectionTestResult:
        """Simulate connection test (always succeeds unless fail_rate)"""
        if random.random() < self.fail_rate:
            self.logger.warning("[MOCK] Connection test failed (simulated)")
            return ConnectionTestResult(False, "Connection failed: simulated failure")

        self.logger.info("[MOCK] ✅ Connection test successful")
        return ConnectionTestResult(True, "Mock connection successful")

    def upload(
        self,
        credentials: Dict[str, Any],
        config: Dict[str, Any],
        file_path: str,
        metadata: Dict[str, Any],
        on_progress: Optional[ProgressCallback] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> Dict[str, Any]:
        """Simulate an upload with evenly spaced progress reports"""
        cancel_token = cancel_token or CancellationToken()
        start_time = time.time()

        if not os.path.exists(file_path):
            raise UploadError(f"File not found: {file_path}", code=ErrorCode.FILE_NOT_FOUND)

        file_size = os.path.getsize(file_path)
        self.logger.info(f"[MOCK] Starting upload: {file_path} ({file_size} bytes)")

        # Estimate: ~5 MB/s upload speed plus base overhead
        total_seconds = file_size / (5 * 1024 * 1024) + 2.0 if self.simulate_timing else 0

        for step in range(1, self.steps + 1):
            cancel_token.raise_if_cancelled()
            if total_seconds:
                self.sleep(total_seconds / self.steps)
            if on_progress:
                sent = file_size * step // self.steps
                on_progress(ProgressUpdate(step * 100 / self.steps, sent, file_size))

        if random.random() < self.fail_rate:
            raise UploadError(
                "Simulated upload failure",
                code=ErrorCode.REMOTE_TRANSFER_FAILED,
            )

        upload_id = f"mock_{uuid4().hex[:11]}"
        self.upload_history.append(
            {
                "id": upload_id,
                "file_path": file_path,
                "metadata": dict(metadata or {}),
                "file_size": file_size,
                "timestamp": time.time(),
            },
        )

        self.logger.info(
            f"[MOCK] ✅ Upload successful: {upload_id} ({time.time() - start_time:.1f}s)",
        )
        return {
            "success": True,
            "id": upload_id,
            "location": f"mock://{self.provider_type.value}/{os.path.basename(file_path)}",
            "size": file_size,
        }

    # =========================================================================
    # TESTING HELPER METHODS
    # =========================================================================

    def get_upload_history(self) -> List[Dict[str, Any]]:
        return self.upload_history.copy()

    def clear_history(self) -> None:
        self.upload_history.clear()
        self.logger.debug("[MOCK] Upload history cleared")

    def get_last_upload(self) -> Optional[Dict[str, Any]]:
        """
        Get most recent upload.

        Returns:
            Last upload record, or None
        """
        return self.upload_history[-1] if self.upload_history else None

    def was_uploaded(self, file_path: str) -> bool:
        return any(record["file_path"] == file_path for record in self.upload_history)
