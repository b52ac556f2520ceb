"""Batch inference clients.

Provides the interface the enrichment pipeline talks to, an adapter for the
OpenAI Batch API and a deterministic in-process mock for testing.
"""

from __future__ import annotations

import io
import itertools
import json
import logging
import threading
from abc import ABC, abstractmethod
from typing import Sequence

from openai import OpenAI, OpenAIError

from app.domain.batch_enrichment import BatchPollResult, BatchRequestItem, BatchSubmission

logger = logging.getLogger(__name__)

BATCH_ENDPOINT = "/v1/chat/completions"

# Provider statuses that mean the batch is still in flight.
PENDING_PROVIDER_STATUSES = frozenset({"validating", "in_progress", "finalizing", "cancelling"})
COMPLETED_PROVIDER_STATUSES = frozenset({"completed"})
FAILED_PROVIDER_STATUSES = frozenset({"failed", "expired", "cancelled"})


class BatchApiError(RuntimeError):
    """Raised when the batch provider rejects or cannot serve a call."""


class BatchInferenceClient(ABC):
    """Abstract base for batch inference providers."""

    @abstractmethod
    def submit(self, requests: Sequence[BatchRequestItem]) -> BatchSubmission:
        """Upload the requests and create one batch.

        Args:
            requests: One item per session, correlated by ``custom_id``.

        Returns:
            The provider's job id and input file id.
        """

    @abstractmethod
    def poll(self, external_job_id: str) -> BatchPollResult:
        """Return the provider's current view of a batch."""

    @abstractmethod
    def fetch_output(self, output_ref: str) -> str:
        """Download an output or error file as newline-delimited JSON."""


def build_jsonl(requests: Sequence[BatchRequestItem]) -> str:
    return "\n".join(json.dumps(item.to_jsonl_record(), ensure_ascii=False) for item in requests)


class OpenAIBatchClient(BatchInferenceClient):
    """Adapter for the OpenAI Batch API (files + batches endpoints)."""

    def __init__(
        self,
        *,
        api_key: str | None = None,
        base_url: str | None = None,
        completion_window: str = "24h",
        timeout_seconds: float = 60.0,
        max_retries: int = 2,
        client: OpenAI | None = None,
    ) -> None:
        if client is None:
            client_kwargs: dict = {"api_key": api_key, "timeout": timeout_seconds, "max_retries": max_retries}
            if base_url:
                client_kwargs["base_url"] = base_url
            client = OpenAI(**client_kwargs)
        self._client = client
        self._completion_window = completion_window

    def submit(self, requests: Sequence[BatchRequestItem]) -> BatchSubmission:
        payload = build_jsonl(requests).encode("utf-8")
        try:
            input_file = self._client.files.create(
                file=("batch_input.jsonl", io.BytesIO(payload)),
                purpose="batch",
            )
            batch = self._client.batches.create(
                input_file_id=input_file.id,
                endpoint=BATCH_ENDPOINT,
                completion_window=self._completion_window,
            )
        except OpenAIError as exc:
            raise BatchApiError(f"Batch submission failed: {exc}") from exc

        logger.info(
            "Batch submitted external_job_id=%s input_file_id=%s requests=%s",
            batch.id,
            input_file.id,
            len(requests),
        )
        return BatchSubmission(external_job_id=batch.id, input_file_id=input_file.id)

    def poll(self, external_job_id: str) -> BatchPollResult:
        try:
            batch = self._client.batches.retrieve(external_job_id)
        except OpenAIError as exc:
            raise BatchApiError(f"Batch poll failed for {external_job_id}: {exc}") from exc

        error_message = None
        errors = getattr(batch, "errors", None)
        if errors is not None and getattr(errors, "data", None):
            error_message = "; ".join(str(item.message) for item in errors.data if item.message)

        return BatchPollResult(
            external_job_id=batch.id,
            provider_status=batch.status,
            output_ref=batch.output_file_id,
            error_ref=batch.error_file_id,
            error_message=error_message,
        )

    def fetch_output(self, output_ref: str) -> str:
        try:
            return self._client.files.content(output_ref).text
        except OpenAIError as exc:
            raise BatchApiError(f"Batch output download failed for {output_ref}: {exc}") from exc


# ---------------------------------------------------------------------------
# Fixed mock payload used for local testing.
# ---------------------------------------------------------------------------
_MOCK_PAYLOAD = {
    "language": "en",
    "sentiment": "neutral",
    "escalated": False,
    "forwarded_hr": False,
    "category": "Onboarding",
    "questions": ["How do I get started?"],
    "summary": "Mock summary of the conversation for testing purposes.",
}


class MockBatchClient(BatchInferenceClient):
    """Deterministic in-process provider.

    Every submitted batch completes on its first poll and answers each
    request with ``_MOCK_PAYLOAD`` unless a test overrides the content or
    the whole output line, drops a record or marks the job failed.
    """

    def __init__(self, *, model: str = "mock-model") -> None:
        self._model = model
        self._counter = itertools.count(1)
        self._lock = threading.Lock()
        self._jobs: dict[str, list[BatchRequestItem]] = {}
        self._statuses: dict[str, str] = {}
        self._files: dict[str, str] = {}
        self.content_overrides: dict[str, str] = {}
        self.omitted_ids: set[str] = set()
        self.error_ids: set[str] = set()
        self.raw_line_overrides: dict[str, str] = {}

    @property
    def submitted_jobs(self) -> dict[str, list[BatchRequestItem]]:
        return dict(self._jobs)

    def set_status(self, external_job_id: str, provider_status: str) -> None:
        with self._lock:
            self._statuses[external_job_id] = provider_status

    def submit(self, requests: Sequence[BatchRequestItem]) -> BatchSubmission:
        with self._lock:
            number = next(self._counter)
            job_id = f"mock_batch_{number}"
            self._jobs[job_id] = list(requests)
            self._statuses.setdefault(job_id, "completed")
        return BatchSubmission(external_job_id=job_id, input_file_id=f"mock_input_{number}")

    def poll(self, external_job_id: str) -> BatchPollResult:
        with self._lock:
            if external_job_id not in self._jobs:
                raise BatchApiError(f"Unknown batch {external_job_id}")
            status = self._statuses[external_job_id]
            requests = self._jobs[external_job_id]

        if status != "completed":
            return BatchPollResult(
                external_job_id=external_job_id,
                provider_status=status,
                error_message="mock failure" if status in FAILED_PROVIDER_STATUSES else None,
            )

        output_ref = f"{external_job_id}_output"
        error_ref = None
        output_lines = []
        error_lines = []
        for item in requests:
            if item.custom_id in self.omitted_ids:
                continue
            if item.custom_id in self.error_ids:
                error_lines.append(self._error_line(item))
            else:
                output_lines.append(self._output_line(item))

        with self._lock:
            self._files[output_ref] = "\n".join(output_lines)
            if error_lines:
                error_ref = f"{external_job_id}_errors"
                self._files[error_ref] = "\n".join(error_lines)

        return BatchPollResult(
            external_job_id=external_job_id,
            provider_status=status,
            output_ref=output_ref,
            error_ref=error_ref,
        )

    def fetch_output(self, output_ref: str) -> str:
        with self._lock:
            if output_ref not in self._files:
                raise BatchApiError(f"Unknown file {output_ref}")
            return self._files[output_ref]

    def _output_line(self, item: BatchRequestItem) -> str:
        if item.custom_id in self.raw_line_overrides:
            return self.raw_line_overrides[item.custom_id]
        content = self.content_overrides.get(item.custom_id, json.dumps(_MOCK_PAYLOAD))
        return json.dumps(
            {
                "id": f"batch_req_{item.custom_id}",
                "custom_id": item.custom_id,
                "response": {
                    "status_code": 200,
                    "body": {
                        "model": self._model,
                        "choices": [{"index": 0, "message": {"role": "assistant", "content": content}}],
                        "usage": {"prompt_tokens": 120, "completion_tokens": 40, "total_tokens": 160},
                    },
                },
                "error": None,
            }
        )

    @staticmethod
    def _error_line(item: BatchRequestItem) -> str:
        return json.dumps(
            {
                "id": f"batch_req_{item.custom_id}",
                "custom_id": item.custom_id,
                "response": {"status_code": 400, "body": {}},
                "error": {"code": "invalid_request", "message": "mock request error"},
            }
        )
