"""
Metaplex Auth - Upload Pipeline

This module uploads CAR archives to a storage backend. Each upload:

1. issues one upload token for the archive root,
2. splits the archive into chunks of at most ~10 MiB along a tree walk,
3. posts the chunks with a bounded number of concurrent requests,
4. retries a failed chunk a bounded number of times with backoff,
5. checks the root CID the backend reports for every chunk.

The upload only returns once every chunk has been acknowledged. The
first fatal error cancels the chunks that have not started and is raised
to the caller.
"""

import logging
import random
import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Set, Union

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from crypto.auth import AuthContext, make_upload_token
from ipld.blockstore import MemoryBlockStore
from ipld.car import CAR_CONTENT_TYPE, CarArchive, read_car
from ipld.cid import CID, as_cid
from ipld.unixfs import File, pack_files
from nft.links import DEFAULT_GATEWAY_HOST, make_gateway_url, make_ipfs_uri

from .backends import NFT_STORAGE, BackendAdapter
from .exceptions import IntegrityError, NetworkError, UploadCancelledError
from .splitter import MAX_CHUNK_SIZE, TreewalkCarSplitter

MAX_PUT_RETRIES = 1
MAX_CONCURRENT_UPLOADS = 3
DEFAULT_TIMEOUT_SECONDS = 300

# How often a waiting upload checks for cancellation
CANCEL_POLL_SECONDS = 0.1

AuthHeaderBuilder = Callable[[str], Dict[str, str]]


def metaplex_auth_headers(upload_token: str) -> Dict[str, str]:
    """Authorization header carrying a Metaplex upload token."""
    return {"Authorization": f"X-Web3-Auth Metaplex {upload_token}"}


@dataclass
class RetryConfig:
    """Backoff between attempts to store a chunk."""
    initial_delay_seconds: float = 1.0
    max_delay_seconds: float = 30.0
    exponential_base: float = 2.0
    jitter_factor: float = 0.1

    def get_retry_delay(self, attempt: int) -> float:
        """Calculate retry delay for given attempt number."""
        if attempt <= 0:
            return 0.0

        delay = self.initial_delay_seconds * (self.exponential_base ** (attempt - 1))
        delay = min(delay, self.max_delay_seconds)

        if self.jitter_factor > 0:
            delay += delay * self.jitter_factor * random.random()

        return delay


@dataclass
class UploadFilesResult:
    """Root CID of an uploaded directory and the names of its files."""

    root_cid: str
    filenames: List[str] = field(default_factory=list)

    def ipfs_uris(self) -> List[str]:
        return [make_ipfs_uri(self.root_cid, name) for name in self.filenames]

    def gateway_urls(self, host: str = DEFAULT_GATEWAY_HOST) -> List[str]:
        return [make_gateway_url(self.root_cid, name, host) for name in self.filenames]


def create_session(pool_size: int = MAX_CONCURRENT_UPLOADS) -> requests.Session:
    """
    HTTP session for uploads.

    The adapter only retries failed connection attempts; rejected or
    interrupted uploads are retried per chunk by the Uploader.
    """
    session = requests.Session()
    retry_strategy = Retry(
        total=2,
        connect=2,
        read=0,
        status=0,
        backoff_factor=0.5,
    )
    adapter = HTTPAdapter(max_retries=retry_strategy, pool_maxsize=max(pool_size, 10))
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    return session


class Uploader:
    """
    Uploads CARs to one storage backend on behalf of an AuthContext.

    The backend adapter chooses the endpoint path and response format; the
    auth header builder turns an upload token into request headers.
    """

    def __init__(self, auth: AuthContext,
                 backend: BackendAdapter = NFT_STORAGE,
                 endpoint: Optional[str] = None,
                 session: Optional[requests.Session] = None,
                 auth_headers: AuthHeaderBuilder = metaplex_auth_headers,
                 max_concurrency: int = MAX_CONCURRENT_UPLOADS,
                 chunk_size: int = MAX_CHUNK_SIZE,
                 retry: Optional[RetryConfig] = None,
                 timeout: float = DEFAULT_TIMEOUT_SECONDS):
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")

        self.auth = auth
        self.backend = backend
        self.endpoint = endpoint or backend.default_endpoint
        self.session = session if session is not None else create_session(max_concurrency)
        self.auth_headers = auth_headers
        self.max_concurrency = max_concurrency
        self.chunk_size = chunk_size
        self.retry = retry or RetryConfig()
        self.timeout = timeout
        self.logger = logging.getLogger(__name__)

    @property
    def upload_url(self) -> str:
        return self.backend.upload_url(self.endpoint)

    def put_car(self, car_bytes: bytes, root: str, upload_token: str) -> str:
        """
        Post one CAR and check the root the backend reports.

        Raises:
            NetworkError: If the request fails or the backend rejects it
            IntegrityError: If the backend reports a different root
        """
        headers = dict(self.auth_headers(upload_token))
        headers["Content-Type"] = CAR_CONTENT_TYPE

        try:
            response = self.session.post(
                self.upload_url,
                data=car_bytes,
                headers=headers,
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            raise NetworkError(f"Upload request failed: {e}") from e

        try:
            body = response.json()
        except ValueError:
            body = None

        cid, error = self.backend.parse_response(response.status_code, body)
        if error is not None:
            raise NetworkError(error, status_code=response.status_code)

        if cid != root:
            raise IntegrityError(expected=root, received=cid)
        return cid

    def _is_cancelled(self, *events: Optional[threading.Event]) -> bool:
        return any(event is not None and event.is_set() for event in events)

    def _store_chunk(self, chunk: bytes, root: str, upload_token: str, max_retries: int,
                     cancel_event: Optional[threading.Event], abort: threading.Event) -> int:
        attempt = 0
        while True:
            if self._is_cancelled(cancel_event, abort):
                raise UploadCancelledError(f"upload of {root} was cancelled")

            try:
                self.put_car(chunk, root, upload_token)
                return len(chunk)
            except NetworkError as e:
                if attempt >= max_retries:
                    raise
                attempt += 1
                delay = self.retry.get_retry_delay(attempt)
                self.logger.warning(
                    f"Storing {len(chunk)} byte chunk of {root} failed ({e}), "
                    f"retrying in {delay:.2f}s (attempt {attempt}/{max_retries})"
                )

            if self._sleep(delay, cancel_event, abort):
                raise UploadCancelledError(f"upload of {root} was cancelled")

    def _sleep(self, delay: float, cancel_event: Optional[threading.Event],
               abort: threading.Event) -> bool:
        """Sleep for delay, returning True early if cancelled."""
        deadline = time.monotonic() + delay
        while True:
            if self._is_cancelled(cancel_event, abort):
                return True
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return False
            abort.wait(min(remaining, CANCEL_POLL_SECONDS))

    def _wait_for_some(self, pending: Set[Future], cancel_event: Optional[threading.Event],
                       on_stored_chunk: Optional[Callable[[int], None]]) -> Set[Future]:
        while True:
            if self._is_cancelled(cancel_event):
                raise UploadCancelledError("upload was cancelled")
            done, pending = wait(pending, timeout=CANCEL_POLL_SECONDS, return_when=FIRST_COMPLETED)
            if done:
                break

        for future in done:
            size = future.result()
            self.logger.debug(f"Stored chunk of {size} bytes")
            if on_stored_chunk is not None:
                on_stored_chunk(size)
        return pending

    def upload_car(self, car: Union[CarArchive, bytes],
                   root: Optional[Union[CID, str]] = None, *,
                   max_retries: int = MAX_PUT_RETRIES,
                   on_stored_chunk: Optional[Callable[[int], None]] = None,
                   max_concurrency: Optional[int] = None,
                   cancel_event: Optional[threading.Event] = None) -> str:
        """
        Upload a CAR archive.

        Args:
            car: Archive to upload, or its serialized bytes
            root: Root CID; defaults to the archive's single root
            max_retries: Extra attempts per chunk after a NetworkError
            on_stored_chunk: Called with the byte size of each stored chunk
            max_concurrency: Chunks in flight at once; defaults to the uploader's
            cancel_event: Set to abort chunks that have not yet been stored

        Returns:
            The root CID string, once every chunk has been stored

        Raises:
            SigningError: If the upload token cannot be signed
            NetworkError: If a chunk still fails after max_retries retries
            IntegrityError: If the backend reports a different root
            UploadCancelledError: If cancel_event is set before completion
        """
        if isinstance(car, (bytes, bytearray)):
            car = read_car(bytes(car))

        root_cid = str(as_cid(root) if root is not None else car.root)
        concurrency = max_concurrency or self.max_concurrency

        upload_token = make_upload_token(self.auth, root_cid)
        splitter = TreewalkCarSplitter(car, self.chunk_size)

        abort = threading.Event()
        pending: Set[Future] = set()
        chunk_count = 0
        start_time = time.time()

        with ThreadPoolExecutor(max_workers=concurrency, thread_name_prefix="car-upload") as executor:
            try:
                for chunk in splitter.cars():
                    while len(pending) >= concurrency:
                        pending = self._wait_for_some(pending, cancel_event, on_stored_chunk)

                    if self._is_cancelled(cancel_event):
                        raise UploadCancelledError(f"upload of {root_cid} was cancelled")

                    chunk_count += 1
                    pending.add(executor.submit(
                        self._store_chunk, chunk, root_cid, upload_token,
                        max_retries, cancel_event, abort
                    ))

                while pending:
                    pending = self._wait_for_some(pending, cancel_event, on_stored_chunk)

            except Exception as e:
                abort.set()
                for future in pending:
                    future.cancel()
                self.logger.error(f"Upload of {root_cid} failed: {e}")
                raise

        self.logger.info(
            f"Stored {root_cid} in {chunk_count} chunk(s) "
            f"({time.time() - start_time:.2f}s)"
        )
        return root_cid

    def upload_files(self, files: Iterable[File], **kwargs) -> UploadFilesResult:
        """
        Upload files wrapped in a directory.

        Keyword arguments are passed on to upload_car().
        """
        files = list(files)
        blockstore = MemoryBlockStore()
        root = pack_files(files, blockstore, wrap_with_directory=True)
        root_cid = self.upload_car(CarArchive([root], blockstore), root, **kwargs)
        return UploadFilesResult(root_cid=root_cid, filenames=[f.name for f in files])
