"""
Upload Manager

High-level coordinator for multi-provider uploads.

This class owns:
- The account table (persisted encrypted)
- The FIFO upload queue, the active uploads and the completed history
  (persisted as JSON)
- The scheduler thread that admits queued jobs while slots are free
- One worker thread per running upload

Upload flow:
    queue_upload() -> queued -> start_queue() -> scheduler admits (FIFO,
    max_concurrent_uploads) -> worker calls provider.upload() -> completed /
    failed / cancelled -> slot freed -> scheduler admits the next job

Every state change is published on the EventBus ("state-changed" carries an
immutable UploadManagerSnapshot).
"""

import logging
import os
import threading
from typing import Any, Callable, Dict, List, Optional

from config import settings
from core.event_bus import EventBus, UploadManagerSnapshot
from upload.config import UploadConfig
from upload.constants import (
    EVENT_ACCOUNT_ADDED,
    EVENT_ACCOUNT_DELETED,
    EVENT_ACCOUNT_TESTED,
    EVENT_ACCOUNT_UPDATED,
    EVENT_ERROR,
    EVENT_INITIALIZED,
    EVENT_LOG,
    EVENT_PROVIDERS_INITIALIZED,
    EVENT_QUEUE_PAUSED,
    EVENT_QUEUE_STARTED,
    EVENT_STATE_CHANGED,
    EVENT_UPLOAD_CANCELLED,
    EVENT_UPLOAD_COMPLETED,
    EVENT_UPLOAD_FAILED,
    EVENT_UPLOAD_PROGRESS,
    EVENT_UPLOAD_QUEUED,
    EVENT_UPLOAD_STARTED,
    INDEXING_PROGRESS,
    MAIN_THUMBNAIL_SUFFIX,
    POST_UPLOAD_ACTION_INDEX,
    S3_PHASE_PROGRESS_SHARE,
    AccountType,
    ErrorCode,
    UploadCommand,
)
from upload.factory import ProviderFactory, ProviderRegistry
from upload.interfaces.provider_interface import (
    AccountStoreError,
    CancellationToken,
    DetailedAccount,
    ProgressCallback,
    ProgressUpdate,
    ProviderInterface,
    S3IndexDelegation,
    UploadCancelledError,
    UploadError,
)
from upload.managers.account_store import AccountStore
from upload.managers.upload_state_store import UploadStateStore
from upload.models.account import Account, generate_account_id
from upload.models.upload_job import UploadJob, generate_upload_id
from upload.utils.file_utils import join_url


class UploadManager:
    """
    Upload queue and dispatch orchestrator.

    Usage:
        manager = UploadManager()
        manager.initialize()

        account = manager.add_account("s3", "Backups", config, credentials)
        manager.queue_upload(account["id"], "/videos/clip.mp4", {"title": "Clip"})
        manager.start_queue()
        manager.wait_until_idle()
        manager.shutdown()

    All public methods are thread-safe. Command-surface methods raise
    UploadError; failures inside a running upload never escape the worker
    thread and end as a failed job instead.
    """

    def __init__(
        self,
        config: Optional[UploadConfig] = None,
        providers: Optional[ProviderRegistry] = None,
        account_store: Optional[AccountStore] = None,
        state_store: Optional[UploadStateStore] = None,
        event_bus: Optional[EventBus] = None,
        provider_mode: str = "auto",
    ):
        """
        Initialize upload manager.

        Args:
            config: Upload settings (None = load config/upload.yaml)
            providers: Provider registry, or None to build one with the factory
            account_store: Encrypted account persistence
            state_store: Queue/history persistence
            event_bus: Where events are published
            provider_mode: Factory mode when providers is None
        """
        self.logger = logging.getLogger(__name__)
        self.config = config or UploadConfig()
        self.event_bus = event_bus or EventBus()

        if providers is None:
            providers = ProviderFactory.create_providers(mode=provider_mode, config=self.config)
        self.providers: ProviderRegistry = dict(providers)

        self.account_store = account_store or AccountStore(
            self.config.data_dir,
            settings.ACCOUNTS_ENCRYPTION_KEY,
        )
        self.state_store = state_store or UploadStateStore(
            self.config.data_dir,
            self.config.completed_history_limit,
        )

        self.max_concurrent_uploads = self.config.max_concurrent_uploads
        self.history_limit = self.config.completed_history_limit
        self.auto_process_queue = self.config.auto_process_queue

        # State (guarded by _lock)
        self.accounts: Dict[str, Account] = {}
        self.upload_queue: List[UploadJob] = []
        self.active_uploads: Dict[str, UploadJob] = {}
        self.completed_uploads: List[UploadJob] = []
        self.queue_paused = self.config.start_paused
        self.initialized = False

        self._tokens: Dict[str, CancellationToken] = {}
        self._workers: Dict[str, threading.Thread] = {}
        self._lock = threading.RLock()
        self._wakeup = threading.Condition(self._lock)
        # Held across snapshot and write: saves land on disk in snapshot order
        self._accounts_save_lock = threading.Lock()
        self._state_save_lock = threading.Lock()
        self._running = False
        self._scheduler_thread: Optional[threading.Thread] = None

        self.logger.info(
            f"Upload Manager created (max concurrent: {self.max_concurrent_uploads}, "
            f"providers: {', '.join(t.value for t in self.providers)})",
        )

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def initialize(self) -> None:
        """Load accounts and queue state, then start the scheduler"""
        self.logger.info("Initializing upload manager...")

        self._publish(
            EVENT_PROVIDERS_INITIALIZED,
            [account_type.value for account_type in self.providers],
        )

        try:
            accounts = self.account_store.load()
        except AccountStoreError as e:
            self.logger.error(f"❌ Failed to load accounts: {e}")
            self._publish(EVENT_ERROR, str(e))
            accounts = []

        try:
            queued, completed = self.state_store.load()
        except UploadError as e:
            self.logger.error(f"❌ Failed to load upload state: {e}")
            self._publish(EVENT_ERROR, str(e))
            queued, completed = [], []

        with self._lock:
            self.accounts = {account.id: account for account in accounts}
            self.upload_queue = queued
            self.completed_uploads = completed[-self.history_limit:]
            self.initialized = True

        self._start_scheduler()

        self.logger.info(
            f"✅ Upload manager initialized: {len(accounts)} accounts, "
            f"{len(queued)} queued uploads",
        )
        self._publish(EVENT_INITIALIZED, None)
        self._publish_state()

    def _start_scheduler(self) -> None:
        with self._lock:
            if self._running:
                return
            self._running = True

        self._scheduler_thread = threading.Thread(
            target=self._scheduler_loop,
            daemon=True,
            name="UploadScheduler-Worker",
        )
        self._scheduler_thread.start()

    def shutdown(self, timeout: float = 5.0) -> None:
        """
        Stop the scheduler, cancel running uploads and persist state.

        Args:
            timeout: Seconds to wait for each thread to stop
        """
        self.logger.info("Shutting down upload manager...")

        with self._lock:
            self._running = False
            cancelled = list(self.active_uploads.values())
            for job in cancelled:
                self._cancel_active(job)
            workers = list(self._workers.values())
            self._wakeup.notify_all()

        self._save_state()

        if self._scheduler_thread and self._scheduler_thread.is_alive():
            self._scheduler_thread.join(timeout=timeout)

        for worker in workers:
            if worker.is_alive():
                worker.join(timeout=timeout)

        for job in cancelled:
            self._publish(EVENT_UPLOAD_CANCELLED, job.to_dict())
        self._publish_state()

        self.logger.info("Upload manager shutdown complete")

    def wait_until_idle(self, timeout: Optional[float] = None) -> bool:
        """
        Block until the queue is empty and nothing is uploading.

        Returns:
            True if idle, False on timeout
        """
        with self._wakeup:
            return self._wakeup.wait_for(
                lambda: not self.upload_queue and not self.active_uploads,
                timeout=timeout,
            )

    # =========================================================================
    # COMMAND SURFACE
    # =========================================================================

    def handle_command(self, action: str, data: Optional[Dict[str, Any]] = None) -> Any:
        """
        Dispatch one command of the RPC-style command surface.

        Args:
            action: UploadCommand value ("ADD_ACCOUNT", "UPLOAD_FILE", ...)
            data: Command arguments

        Raises:
            UploadError: UNKNOWN_COMMAND, or whatever the command raises
        """
        data = data or {}
        try:
            command = UploadCommand(action)
        except ValueError:
            raise UploadError(
                f"Unknown upload command: {action}",
                code=ErrorCode.UNKNOWN_COMMAND,
            ) from None

        handlers: Dict[UploadCommand, Callable[[], Any]] = {
            UploadCommand.ADD_ACCOUNT: lambda: self.add_account(
                data.get("type"),
                data.get("name", ""),
                data.get("config"),
                data.get("credentials"),
            ),
            UploadCommand.UPDATE_ACCOUNT: lambda: self.update_account(
                data.get("account_id"),
                data.get("updates") or {},
            ),
            UploadCommand.DELETE_ACCOUNT: lambda: self.delete_account(data.get("account_id")),
            UploadCommand.LIST_ACCOUNTS: lambda: self.list_accounts(
                data.get("include_credentials", False),
            ),
            UploadCommand.TEST_ACCOUNT: lambda: self.test_account(data.get("account_id")),
            UploadCommand.UPLOAD_FILE: lambda: self.queue_upload(
                data.get("account_id"),
                data.get("file_path"),
                data.get("metadata"),
            ),
            UploadCommand.CANCEL_UPLOAD: lambda: self.cancel_upload(data.get("upload_id")),
            UploadCommand.GET_UPLOAD_STATUS: self.get_upload_status,
            UploadCommand.GET_STATE: self.get_state,
            UploadCommand.CLEAR_COMPLETED: self.clear_completed,
            UploadCommand.REMOVE_FROM_QUEUE: lambda: self.remove_from_queue(
                data.get("upload_id"),
            ),
            UploadCommand.REMOVE_COMPLETED: lambda: self.remove_completed(
                data.get("upload_id"),
            ),
            UploadCommand.START_QUEUE: self.start_queue,
            UploadCommand.PAUSE_QUEUE: self.pause_queue,
            UploadCommand.GET_QUEUE_STATUS: self.get_queue_status,
        }
        return handlers[command]()

    # =========================================================================
    # ACCOUNTS
    # =========================================================================

    def add_account(
        self,
        account_type: str,
        name: str,
        config: Optional[Dict[str, Any]] = None,
        credentials: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Validate and store a new account.

        Returns:
            Account dictionary without credentials

        Raises:
            UploadError: Unknown type, no provider or invalid credentials
        """
        try:
            resolved_type = AccountType(account_type)
        except ValueError:
            raise UploadError(
                f"Unknown account type: {account_type}",
                code=ErrorCode.VALIDATION_FAILED,
            ) from None

        provider = self._get_provider(resolved_type)
        account = Account(
            id=generate_account_id(),
            type=resolved_type,
            name=name,
            config=dict(config or {}),
            credentials=dict(credentials or {}),
        )

        self._validate_account(provider, account)

        with self._lock:
            self.accounts[account.id] = account
            account_data = account.to_dict(include_credentials=False)

        self._save_accounts()
        self.logger.info(f"✅ Account added: {account!r}")
        self._publish(EVENT_ACCOUNT_ADDED, account_data)
        self._publish_state()
        return account_data

    def update_account(self, account_id: str, updates: Dict[str, Any]) -> Dict[str, Any]:
        """
        Merge name/config/credentials updates into an account.

        A merged copy is validated first; on success the updates are merged
        again onto the account as stored at that moment, so credentials
        refreshed meanwhile by a running upload are kept.
        """
        with self._lock:
            candidate = self._get_account(account_id).copy()
        self._merge_account_updates(candidate, updates)

        validation = None
        if updates.get("config") or updates.get("credentials"):
            validation = self._validate_account(self._get_provider(candidate.type), candidate)

        with self._lock:
            updated = self._get_account(account_id).copy()
            self._merge_account_updates(updated, updates)
            if validation is not None:
                self._apply_validation(updated, validation)
            self.accounts[account_id] = updated
            account_data = updated.to_dict(include_credentials=False)

        self._save_accounts()
        self.logger.info(f"Account updated: {updated!r}")
        self._publish(EVENT_ACCOUNT_UPDATED, account_data)
        self._publish_state()
        return account_data

    @staticmethod
    def _merge_account_updates(account: Account, updates: Dict[str, Any]) -> None:
        if "name" in updates:
            account.name = updates["name"]
        if updates.get("config"):
            account.config.update(updates["config"])
        if updates.get("credentials"):
            account.credentials.update(updates["credentials"])

    def delete_account(self, account_id: str) -> Dict[str, Any]:
        """
        Remove an account, its queued uploads, and cancel its running uploads.
        """
        with self._lock:
            self._get_account(account_id)

            removed = [job for job in self.upload_queue if job.account_id == account_id]
            self.upload_queue = [
                job for job in self.upload_queue if job.account_id != account_id
            ]

            cancelled = [
                job for job in self.active_uploads.values() if job.account_id == account_id
            ]
            for job in cancelled:
                self._cancel_active(job)

            del self.accounts[account_id]
            self._wakeup.notify_all()

        self._save_accounts()
        self._save_state()

        self.logger.info(
            f"Account deleted: {account_id} ({len(removed)} queued uploads removed, "
            f"{len(cancelled)} active uploads cancelled)",
        )
        for job in cancelled:
            self._publish(EVENT_UPLOAD_CANCELLED, job.to_dict())
        self._publish(EVENT_ACCOUNT_DELETED, {"account_id": account_id})
        self._publish_state()
        return {"success": True}

    def list_accounts(self, include_credentials: bool = False) -> List[Dict[str, Any]]:
        with self._lock:
            return [
                account.to_dict(include_credentials=include_credentials)
                for account in self.accounts.values()
            ]

    def test_account(self, account_id: str) -> Dict[str, Any]:
        """
        Run the provider's connection test for an account.

        Returns:
            {"success": bool, "result": {...}} or {"success": False, "error": msg}
        """
        with self._lock:
            account = self._get_account(account_id)

        try:
            provider = self._get_provider(account.type)
            result = provider.test_connection(account.credentials, account.config)
            response = {"success": result.success, "result": result.to_dict()}
        except UploadError as e:
            self.logger.error(f"❌ Account test failed for {account_id}: {e}")
            response = {"success": False, "error": str(e)}

        self._publish(EVENT_ACCOUNT_TESTED, {"account_id": account_id, **response})
        return response

    def _validate_account(
        self,
        provider: ProviderInterface,
        account: Account,
    ) -> Optional[DetailedAccount]:
        """
        Check credentials through the provider; store reported info/tokens.

        Returns:
            The provider's detailed result, if it reported one

        Raises:
            UploadError: CREDENTIALS_INVALID
        """
        result = provider.check_auth(account.credentials, account.config)

        if not result.valid:
            raise UploadError("Invalid credentials", code=ErrorCode.CREDENTIALS_INVALID)

        if isinstance(result, DetailedAccount):
            self._apply_validation(account, result)
            return result
        return None

    @staticmethod
    def _apply_validation(account: Account, result: DetailedAccount) -> None:
        if result.refreshed_tokens:
            account.credentials.update(result.refreshed_tokens)
        if result.account_info is not None:
            account.account_info = result.account_info

    def _get_account(self, account_id: str) -> Account:
        account = self.accounts.get(account_id)
        if account is None:
            raise UploadError(
                f"Account {account_id} not found",
                code=ErrorCode.ACCOUNT_NOT_FOUND,
            )
        return account

    def _get_provider(self, account_type: AccountType) -> ProviderInterface:
        provider = self.providers.get(account_type)
        if provider is None:
            raise UploadError(
                f"Provider not available: {account_type.value}",
                code=ErrorCode.PROVIDER_UNAVAILABLE,
            )
        return provider

    # =========================================================================
    # QUEUE OPERATIONS
    # =========================================================================

    def queue_upload(
        self,
        account_id: str,
        file_path: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Add an upload to the end of the queue.

        Returns:
            Job dictionary

        Raises:
            UploadError: ACCOUNT_NOT_FOUND or FILE_NOT_FOUND
        """
        with self._lock:
            account = self._get_account(account_id)

        if not file_path or not os.path.exists(file_path):
            raise UploadError(f"File not found: {file_path}", code=ErrorCode.FILE_NOT_FOUND)

        job = UploadJob(
            id=generate_upload_id(),
            account_id=account_id,
            account_type=account.type,
            file_path=file_path,
            metadata=dict(metadata or {}),
            total_bytes=os.path.getsize(file_path),
        )

        with self._lock:
            self.upload_queue.append(job)
            job_data = job.to_dict()
            if not self.queue_paused and self.auto_process_queue:
                self._wakeup.notify_all()

        self._save_state()
        self.logger.info(f"Upload queued: {job.id} ({file_path} -> {account_id})")
        self._publish(EVENT_UPLOAD_QUEUED, job_data)
        self._publish_state()
        return job_data

    def cancel_upload(self, upload_id: str) -> Dict[str, Any]:
        """
        Cancel a queued or running upload.

        A running upload is moved to history right away; its cancellation
        token stops the provider at the next checkpoint.

        Raises:
            UploadError: If the upload is neither queued nor active
        """
        with self._lock:
            job = next((j for j in self.upload_queue if j.id == upload_id), None)
            if job is not None:
                self.upload_queue.remove(job)
                job.mark_cancelled()
                self._append_completed(job)
            elif upload_id in self.active_uploads:
                job = self.active_uploads[upload_id]
                self._cancel_active(job)
                self._wakeup.notify_all()
            else:
                raise UploadError(f"Upload {upload_id} not found")
            job_data = job.to_dict()

        self._save_state()
        self.logger.info(f"Upload cancelled: {upload_id}")
        self._publish(EVENT_UPLOAD_CANCELLED, job_data)
        self._publish_state()
        return {"success": True}

    def _cancel_active(self, job: UploadJob) -> None:
        """Move a running job to history as cancelled and trip its token"""
        self.active_uploads.pop(job.id, None)
        job.mark_cancelled()
        self._append_completed(job)

        token = self._tokens.pop(job.id, None)
        if token is not None:
            token.cancel()

    def start_queue(self) -> Dict[str, Any]:
        with self._lock:
            self.queue_paused = False
            self._wakeup.notify_all()

        self._log_event("Starting upload queue processing")
        self._publish(EVENT_QUEUE_STARTED, None)
        self._publish_state()
        return {"success": True}

    def pause_queue(self) -> Dict[str, Any]:
        """Stop admitting new uploads; running uploads continue"""
        with self._lock:
            self.queue_paused = True

        self._log_event("Pausing upload queue processing")
        self._publish(EVENT_QUEUE_PAUSED, None)
        self._publish_state()
        return {"success": True}

    def get_queue_status(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "paused": self.queue_paused,
                "queue_length": len(self.upload_queue),
                "active_uploads": len(self.active_uploads),
            }

    def get_upload_status(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "active": [job.to_dict() for job in self.active_uploads.values()],
                "queued": [job.to_dict() for job in self.upload_queue],
                "completed": [
                    job.to_dict() for job in self.completed_uploads[-self.history_limit:]
                ],
            }

    def get_state(self) -> Dict[str, Any]:
        return self.snapshot().to_dict()

    def snapshot(self) -> UploadManagerSnapshot:
        """Immutable copy of the current state"""
        with self._lock:
            return UploadManagerSnapshot(
                initialized=self.initialized,
                paused=self.queue_paused,
                providers=tuple(t.value for t in self.providers),
                accounts=tuple(self.list_accounts()),
                active=tuple(job.to_dict() for job in self.active_uploads.values()),
                queued=tuple(job.to_dict() for job in self.upload_queue),
                completed=tuple(
                    job.to_dict() for job in self.completed_uploads[-self.history_limit:]
                ),
            )

    def clear_completed(self) -> Dict[str, Any]:
        with self._lock:
            self.completed_uploads = []

        self._save_state()
        self._publish_state()
        return {"success": True}

    def remove_from_queue(self, upload_id: str) -> Dict[str, Any]:
        """Drop a queued upload without recording it in history"""
        with self._lock:
            job = next((j for j in self.upload_queue if j.id == upload_id), None)
            if job is None:
                return {"success": False, "error": "Upload not found in queue"}
            self.upload_queue.remove(job)
            self._wakeup.notify_all()

        self._save_state()
        self._publish_state()
        return {"success": True}

    def remove_completed(self, upload_id: str) -> Dict[str, Any]:
        with self._lock:
            job = next((j for j in self.completed_uploads if j.id == upload_id), None)
            if job is None:
                return {"success": False, "error": "Upload not found in completed list"}
            self.completed_uploads.remove(job)

        self._save_state()
        self._publish_state()
        return {"success": True}

    def _append_completed(self, job: UploadJob) -> None:
        """Add to history, evicting the oldest entries beyond the limit"""
        self.completed_uploads.append(job)
        if len(self.completed_uploads) > self.history_limit:
            self.completed_uploads = self.completed_uploads[-self.history_limit:]

    # =========================================================================
    # SCHEDULER
    # =========================================================================

    def _has_admissible_work(self) -> bool:
        return (
            not self.queue_paused
            and bool(self.upload_queue)
            and len(self.active_uploads) < self.max_concurrent_uploads
        )

    def _scheduler_loop(self) -> None:
        """
        Admit queued jobs strictly FIFO while slots are free.

        Woken by: start_queue, enqueue (auto-process), slot freed, shutdown.
        """
        self.logger.info("Upload scheduler thread started")

        while True:
            with self._wakeup:
                while self._running and not self._has_admissible_work():
                    self._wakeup.wait()
                if not self._running:
                    break
                started, rejected = self._admit_jobs()

            for job in rejected:
                self.logger.error(f"❌ Upload {job.id} failed before start: {job.error}")
                self._save_state()
                self._publish(EVENT_UPLOAD_FAILED, job.to_dict())
                self._publish_state()

            for worker in started:
                worker.start()

        self.logger.info("Upload scheduler thread stopped")

    def _admit_jobs(self):
        """
        Move jobs from the queue head to active while allowed. Called with
        the lock held.

        Returns:
            (worker threads to start, jobs failed without a provider call)
        """
        started: List[threading.Thread] = []
        rejected: List[UploadJob] = []

        while self._has_admissible_work():
            job = self.upload_queue.pop(0)

            account = self.accounts.get(job.account_id)
            provider = self.providers.get(account.type) if account else None
            if account is None or provider is None:
                job.mark_failed(
                    "Account not found" if account is None else "Provider not available",
                )
                self._append_completed(job)
                rejected.append(job)
                continue

            job.mark_started()
            self.active_uploads[job.id] = job
            token = CancellationToken()
            self._tokens[job.id] = token

            worker = threading.Thread(
                target=self._run_job,
                args=(job, account, provider, token),
                daemon=True,
                name=f"UploadWorker-{job.id}",
            )
            self._workers[job.id] = worker
            started.append(worker)

        if rejected:
            self._wakeup.notify_all()

        return started, rejected

    # =========================================================================
    # UPLOAD EXECUTION (worker threads)
    # =========================================================================

    def _run_job(
        self,
        job: UploadJob,
        account: Account,
        provider: ProviderInterface,
        token: CancellationToken,
    ) -> None:
        """Worker thread body: run one upload to a terminal state"""
        self.logger.info(f"Upload started: {job.id} ({job.file_path} via {account.type.value})")
        self._publish(EVENT_UPLOAD_STARTED, job.to_dict())
        self._publish_state()

        try:
            result = self._execute_upload(job, account, provider, token)
        except UploadCancelledError:
            self.logger.info(f"Upload {job.id} stopped after cancellation")
        except UploadError as e:
            self._fail_job(job, str(e))
        except Exception as e:
            self.logger.error(f"❌ Unexpected error in upload {job.id}: {e}", exc_info=True)
            self._fail_job(job, f"Upload failed: {e}")
        else:
            self._complete_job(job, result)
        finally:
            with self._lock:
                self._workers.pop(job.id, None)
                self._tokens.pop(job.id, None)

    def _execute_upload(
        self,
        job: UploadJob,
        account: Account,
        provider: ProviderInterface,
        token: CancellationToken,
    ) -> Dict[str, Any]:
        """
        Call the provider, with the auth retry and the S3-then-index branch.

        Returns:
            Job result dictionary
        """
        on_progress = self._progress_handler(job)

        try:
            outcome = provider.upload(
                account.credentials,
                account.config,
                job.file_path,
                job.metadata,
                on_progress,
                token,
            )
        except UploadCancelledError:
            raise
        except UploadError as e:
            if not self._is_auth_retryable(e, account):
                raise
            outcome = self._retry_with_refreshed_credentials(
                job, account, provider, e, on_progress, token,
            )

        if isinstance(outcome, S3IndexDelegation):
            return self._run_s3_index(job, outcome, token)

        return self._take_updated_credentials(account.id, outcome)

    def _is_auth_retryable(self, error: UploadError, account: Account) -> bool:
        message = str(error).lower()
        return (
            ("401" in message or "unauthorized" in message)
            and account.type == AccountType.YOUTUBE
            and bool(account.credentials.get("refresh_token"))
        )

    def _retry_with_refreshed_credentials(
        self,
        job: UploadJob,
        account: Account,
        provider: ProviderInterface,
        error: UploadError,
        on_progress: ProgressCallback,
        token: CancellationToken,
    ):
        """
        Force a token refresh and retry the upload exactly once.

        Raises:
            UploadError: The original error if the token did not change,
                otherwise the retry's error folded into the original
        """
        self.logger.info(f"Authentication error for {job.id}, attempting token refresh...")

        try:
            refreshed = provider.refresh_credentials(account.credentials)
        except UploadError as refresh_error:
            self.logger.error(f"Token refresh failed: {refresh_error}")
            raise error from refresh_error

        if not refreshed or refreshed.get("access_token") == account.credentials.get(
            "access_token",
        ):
            self.logger.warning("Token refresh did not produce a new access token")
            raise error

        self._update_credentials(account.id, refreshed)
        self.logger.info(f"Token refreshed, retrying upload {job.id}")

        try:
            return provider.upload(
                refreshed,
                account.config,
                job.file_path,
                job.metadata,
                on_progress,
                token,
            )
        except UploadCancelledError:
            raise
        except UploadError as retry_error:
            raise UploadError(
                f"{error} (retry after token refresh failed: {retry_error})",
                code=retry_error.code,
            ) from retry_error

    def _take_updated_credentials(
        self,
        account_id: str,
        result: Dict[str, Any],
    ) -> Dict[str, Any]:
        """Persist credentials a provider refreshed during upload"""
        result = dict(result or {})
        updated = result.pop("updated_credentials", None)
        if updated:
            self._update_credentials(account_id, updated)
        return result

    def _update_credentials(self, account_id: str, credentials: Dict[str, Any]) -> None:
        with self._lock:
            account = self.accounts.get(account_id)
            if account is None:
                return
            account.credentials.update(credentials)

        self._save_accounts()
        self.logger.info(f"Updated stored credentials for account {account_id}")

    def _run_s3_index(
        self,
        job: UploadJob,
        delegation: S3IndexDelegation,
        token: CancellationToken,
    ) -> Dict[str, Any]:
        """
        Two-phase completion: upload to the S3 account, then index on
        StarCapture Player. S3 progress fills 0-80%, indexing sits at 85%.
        """
        if delegation.post_upload_action != POST_UPLOAD_ACTION_INDEX:
            raise UploadError(
                f"Unknown post-upload action: {delegation.post_upload_action}",
                code=ErrorCode.VALIDATION_FAILED,
            )

        self.logger.info(f"{delegation.message} (job {job.id})")

        with self._lock:
            s3_account = self.accounts.get(delegation.s3_account_id)
        if s3_account is None:
            raise UploadError(
                f"S3 account not found: {delegation.s3_account_id}",
                code=ErrorCode.S3_ACCOUNT_NOT_FOUND,
            )

        s3_provider = self.providers.get(AccountType.S3)
        if s3_provider is None:
            raise UploadError(
                "S3 provider not available",
                code=ErrorCode.S3_PROVIDER_UNAVAILABLE,
            )

        index_data = delegation.index_data
        s3_metadata = {
            key: value
            for key, value in (
                ("title", index_data.get("title")),
                ("description", index_data.get("description")),
                ("include_metadata", index_data.get("include_metadata")),
                ("include_thumbnails", index_data.get("include_thumbnails")),
                ("main_thumbnail_path", index_data.get("main_thumbnail_path")),
            )
            if value is not None
        }

        s3_result = s3_provider.upload(
            s3_account.credentials,
            s3_account.config,
            job.file_path,
            s3_metadata,
            self._progress_handler(job, scale=S3_PHASE_PROGRESS_SHARE, monotonic=True),
            token,
        )
        token.raise_if_cancelled()

        self._set_progress(job, INDEXING_PROGRESS, "indexing")

        public_url = s3_account.config.get("public_url") or ""

        def to_url(key: Optional[str]) -> Optional[str]:
            if not key:
                return None
            return join_url(public_url, key) if public_url else None

        main_thumb_key = next(
            (
                key for key in s3_result.get("thumbnail_keys") or []
                if key.endswith(MAIN_THUMBNAIL_SUFFIX)
            ),
            None,
        )

        sc_provider = self.providers.get(AccountType.SC_PLAYER)
        index_video = getattr(sc_provider, "index_video", None)
        if index_video is None:
            raise UploadError(
                "StarCapture Player provider not available for indexing",
                code=ErrorCode.PROVIDER_UNAVAILABLE,
            )

        index_result = index_video(
            index_data.get("credentials") or {},
            index_data.get("config") or {},
            {
                "title": index_data.get("title"),
                "description": index_data.get("description"),
                "s3_video_path": to_url(s3_result.get("key")) or s3_result.get("location"),
                "s3_json_path": to_url(s3_result.get("metadata_key")),
                "s3_main_thumb_path": to_url(main_thumb_key),
                "privacy": index_data.get("privacy"),
                "character_id": index_data.get("character_id"),
                "organization_id": index_data.get("organization_id"),
            },
        )

        with self._lock:
            s3_account.touch()

        return {
            "success": True,
            "s3_result": s3_result,
            "index_result": index_result,
            "view_url": index_result.get("view_url"),
        }

    def _progress_handler(
        self,
        job: UploadJob,
        scale: float = 1.0,
        monotonic: bool = False,
    ) -> ProgressCallback:
        """Progress callback that updates the job and publishes the event"""

        def on_progress(update: ProgressUpdate) -> None:
            with self._lock:
                if job.id not in self.active_uploads:
                    return
                job.apply_progress(update, scale=scale, monotonic=monotonic)
                event = self._progress_event(job)

            self._publish(EVENT_UPLOAD_PROGRESS, event)

        return on_progress

    def _set_progress(self, job: UploadJob, percentage: float, message: str) -> None:
        with self._lock:
            if job.id not in self.active_uploads:
                return
            job.progress = percentage
            job.status_message = message
            event = self._progress_event(job)
        self._publish(EVENT_UPLOAD_PROGRESS, event)

    @staticmethod
    def _progress_event(job: UploadJob) -> Dict[str, Any]:
        return {
            "upload_id": job.id,
            "progress": job.progress,
            "bytes_uploaded": job.bytes_uploaded,
            "total_bytes": job.total_bytes,
            "message": job.status_message,
        }

    def _complete_job(self, job: UploadJob, result: Dict[str, Any]) -> None:
        with self._lock:
            if self.active_uploads.pop(job.id, None) is None:
                self.logger.info(f"Ignoring late result of cancelled upload {job.id}")
                return

            job.mark_completed(result)
            self._append_completed(job)
            account = self.accounts.get(job.account_id)
            if account is not None:
                account.record_upload()
            job_data = job.to_dict()
            self._wakeup.notify_all()

        self._save_accounts()
        self._save_state()
        self.logger.info(f"✅ Upload completed: {job.id}")
        self._publish(EVENT_UPLOAD_COMPLETED, job_data)
        self._publish_state()

    def _fail_job(self, job: UploadJob, error: str) -> None:
        with self._lock:
            if self.active_uploads.pop(job.id, None) is None:
                self.logger.info(f"Ignoring late error of cancelled upload {job.id}: {error}")
                return

            job.mark_failed(error)
            self._append_completed(job)
            job_data = job.to_dict()
            self._wakeup.notify_all()

        self._save_state()
        self.logger.error(f"❌ Upload failed: {job.id}: {error}")
        self._publish(EVENT_UPLOAD_FAILED, job_data)
        self._publish_state()

    # =========================================================================
    # PERSISTENCE AND EVENTS
    # =========================================================================

    def _save_accounts(self) -> None:
        try:
            with self._accounts_save_lock:
                with self._lock:
                    accounts = [account.copy() for account in self.accounts.values()]
                self.account_store.save(accounts)
        except UploadError as e:
            self.logger.error(f"❌ Failed to save accounts: {e}")
            self._publish(EVENT_ERROR, str(e))

    def _save_state(self) -> None:
        try:
            with self._state_save_lock:
                with self._lock:
                    queued = list(self.upload_queue)
                    completed = list(self.completed_uploads)
                self.state_store.save(queued, completed)
        except UploadError as e:
            self.logger.error(f"❌ Failed to save upload state: {e}")
            self._publish(EVENT_ERROR, str(e))

    def _publish(self, event_type: str, data: Any) -> None:
        self.event_bus.publish(event_type, data)

    def _publish_state(self) -> None:
        self._publish(EVENT_STATE_CHANGED, self.snapshot())

    def _log_event(self, message: str) -> None:
        self.logger.info(message)
        self._publish(EVENT_LOG, message)

    def __repr__(self) -> str:
        status = self.get_queue_status()
        return (
            f"UploadManager(accounts={len(self.accounts)}, "
            f"queued={status['queue_length']}, active={status['active_uploads']}, "
            f"paused={status['paused']})"
        )
