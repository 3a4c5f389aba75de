"""
State Repository

Durable storage for the state snapshot as a single JSON document behind a
bucket/key style address. ``get`` reports a missing or empty document as
"not found" rather than an error; ``put`` replaces the whole document.
"""

import logging
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Optional, Tuple

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from ..errors import StateReadError, StateWriteError
from ..models.state import State


logger = logging.getLogger(__name__)

# S3 error codes meaning the state object does not exist yet
_NOT_FOUND_CODES = {"NoSuchKey", "404", "NotFound"}


class StateRepository(ABC):
    """Read and replace the persisted state snapshot."""

    @abstractmethod
    def get(self) -> Tuple[Optional[State], bool]:
        """
        Read the stored snapshot.

        Returns:
            (state, True) when a snapshot exists, (None, False) otherwise

        Raises:
            StateReadError: If the snapshot exists but cannot be read or decoded
        """

    @abstractmethod
    def put(self, state: State) -> None:
        """
        Replace the stored snapshot with ``state``.

        Raises:
            StateWriteError: If the write fails
        """


def _decode(body: bytes, location: str) -> Tuple[Optional[State], bool]:
    if not body.strip():
        logger.warning(f"State at {location} is empty, treating it as not found")
        return None, False
    try:
        return State.from_json(body), True
    except ValueError as exc:
        raise StateReadError(f"cannot decode state at {location}: {exc}") from exc


class S3StateRepository(StateRepository):
    """
    State stored as one S3 object.

    Transient S3 failures are retried by botocore's own retry handler, which
    always resends the identical request.
    """

    def __init__(self, bucket: str, key: str, client: Any = None, max_attempts: int = 5):
        """
        Initialize the repository.

        Args:
            bucket: S3 bucket name
            key: Object key of the state document
            client: Optional boto3 S3 client
            max_attempts: botocore retry attempts when building a client
        """
        self.bucket = bucket
        self.key = key
        self.client = client or boto3.client(
            "s3", config=Config(retries={"max_attempts": max_attempts, "mode": "standard"})
        )

    @property
    def location(self) -> str:
        return f"s3://{self.bucket}/{self.key}"

    def get(self) -> Tuple[Optional[State], bool]:
        try:
            response = self.client.get_object(Bucket=self.bucket, Key=self.key)
            body = response["Body"].read()
        except ClientError as exc:
            code = exc.response.get("Error", {}).get("Code")
            if code in _NOT_FOUND_CODES:
                logger.info(f"No state found at {self.location}")
                return None, False
            raise StateReadError(f"cannot read state from {self.location}: {exc}") from exc
        except BotoCoreError as exc:
            raise StateReadError(f"cannot read state from {self.location}: {exc}") from exc

        return _decode(body, self.location)

    def put(self, state: State) -> None:
        body = state.to_json().encode("utf-8")
        try:
            self.client.put_object(
                Bucket=self.bucket,
                Key=self.key,
                Body=body,
                ContentType="application/json",
            )
        except (ClientError, BotoCoreError) as exc:
            raise StateWriteError(f"cannot write state to {self.location}: {exc}") from exc
        logger.info(f"State written to {self.location} ({len(body)} bytes)")


class DiskStateRepository(StateRepository):
    """
    State stored as a local JSON file.

    Writes go to a temporary file that is then renamed over the state file,
    so a reader never sees a partially written document. Access from
    several threads is serialized with a lock.

    Example usage:
        repository = DiskStateRepository("/var/lib/idpscim/state.json")
        state, found = repository.get()
    """

    def __init__(self, path: str):
        self.path = Path(path)
        self._lock = threading.Lock()

    def get(self) -> Tuple[Optional[State], bool]:
        with self._lock:
            try:
                body = self.path.read_bytes()
            except FileNotFoundError:
                logger.info(f"No state found at {self.path}")
                return None, False
            except OSError as exc:
                raise StateReadError(f"cannot read state from {self.path}: {exc}") from exc

        return _decode(body, str(self.path))

    def put(self, state: State) -> None:
        with self._lock:
            temp_file = self.path.with_suffix(".tmp")
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                temp_file.write_text(state.to_json(), encoding="utf-8")
                # Atomic on POSIX, readers see the old or the new document
                temp_file.replace(self.path)
            except OSError as exc:
                raise StateWriteError(f"cannot write state to {self.path}: {exc}") from exc
