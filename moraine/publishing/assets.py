"""
AssetPublisher: upload a local file tree to an object container.

Used to publish the pre-built front-end to the static website container of
the front-end storage account, and as a standalone "upload this folder and
give me signed links" tool.

Publishing has no transactional guarantee: a failure stops the publish but
objects uploaded before it stay in place. Uploads overwrite, so re-running
the publish converges.
"""

import fnmatch
import os
from concurrent.futures import FIRST_EXCEPTION, ThreadPoolExecutor, wait
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Iterable, Iterator

import structlog

from moraine.core.context import ExecutionGate
from moraine.publishing.blob_store import BlobStore
from moraine.publishing.content_types import content_type_for

logger = structlog.get_logger()

DEFAULT_SIGNING_DURATION = timedelta(hours=2)


class PublishError(Exception):
    """Raised when an asset cannot be read or uploaded."""

    def __init__(self, message: str, name: str | None = None):
        self.name = name
        super().__init__(message)


@dataclass(frozen=True)
class Asset:
    """A file read from disk, ready to upload."""

    path: Path
    name: str
    content_type: str
    content: bytes = field(repr=False)


@dataclass(frozen=True)
class PublishedObject:
    """An uploaded asset."""

    name: str
    content_type: str
    url: str
    signed_url: str | None = None
    expires_at: datetime | None = None


@dataclass(frozen=True)
class SigningPolicy:
    """Read-only signed URLs, valid from now for 'duration'."""

    duration: timedelta = DEFAULT_SIGNING_DURATION


@dataclass(frozen=True)
class PlaceholderRewrite:
    """
    Replace a build-time placeholder token in matching assets.

    The front-end is built before the API endpoint exists, so the build
    contains a token such as "#{REACT_APP_TODO_API_ENDPOINT}" which is
    replaced in memory right before upload. Files on disk are not modified.

    Example:
        rewrite = PlaceholderRewrite("#{REACT_APP_TODO_API_ENDPOINT}", "https://app.azurewebsites.net/api")
    """

    token: str
    value: str
    patterns: tuple[str, ...] = ("*main.*js",)
    encoding: str = "utf-8"

    def matches(self, name: str) -> bool:
        return any(fnmatch.fnmatchcase(name, pattern) for pattern in self.patterns)

    def __call__(self, asset: Asset) -> Asset:
        if not self.matches(asset.name):
            return asset

        try:
            text = asset.content.decode(self.encoding)
        except UnicodeDecodeError as e:
            raise PublishError(f"Cannot rewrite '{asset.name}': not {self.encoding} text", asset.name) from e

        if self.token not in text:
            return asset

        logger.info("placeholder_rewritten", asset=asset.name, token=self.token)
        return replace(asset, content=text.replace(self.token, self.value).encode(self.encoding))


AssetTransform = Callable[[Asset], Asset]


def iter_files(root: str | Path) -> Iterator[Path]:
    """
    Walk a directory depth first, yielding regular files.

    Files of a directory come before its subdirectories; entries are sorted
    by name. Symlinked directories are followed once: a directory whose real
    path was already visited is skipped.
    """
    visited: set[str] = set()

    def walk(directory: Path) -> Iterator[Path]:
        real = os.path.realpath(directory)
        if real in visited:
            logger.debug("directory_revisit_skipped", directory=str(directory))
            return
        visited.add(real)

        entries = sorted(directory.iterdir(), key=lambda p: p.name)
        subdirectories = []
        for entry in entries:
            if entry.is_dir():
                subdirectories.append(entry)
            elif entry.is_file():
                yield entry

        for subdirectory in subdirectories:
            yield from walk(subdirectory)

    yield from walk(Path(root))


def object_name(root: Path, path: Path) -> str:
    """Object name of a file: its POSIX path relative to the root."""
    return path.relative_to(root).as_posix()


def collect_assets(root: str | Path, transforms: Iterable[AssetTransform] = ()) -> list[Asset]:
    """
    Read every file below root.

    Raises:
        PublishError: If root is not a directory or any file is unreadable
    """
    root_path = Path(root)
    if not root_path.is_dir():
        raise PublishError(f"Asset root is not a directory: {root_path}")

    transforms = list(transforms)
    assets = []
    try:
        for path in iter_files(root_path):
            name = object_name(root_path, path)
            try:
                content = path.read_bytes()
            except OSError as e:
                raise PublishError(f"Cannot read asset '{name}': {e}", name) from e

            asset = Asset(path=path, name=name, content_type=content_type_for(name), content=content)
            for transform in transforms:
                asset = transform(asset)
            assets.append(asset)
    except PublishError:
        raise
    except OSError as e:
        raise PublishError(f"Cannot list assets below '{root_path}': {e}") from e

    return assets


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AssetPublisher:
    """
    Publishes a directory tree to an object container.

    In preview, publish() returns an empty list without reading, uploading
    or signing anything.

    Example:
        publisher = AssetPublisher(AzureBlobStore.from_connection_string(cs), gate)
        objects = publisher.publish("../Front/build", "$web")
    """

    def __init__(
        self,
        store: BlobStore,
        gate: ExecutionGate,
        clock: Callable[[], datetime] = utcnow,
        max_workers: int = 1,
    ):
        """
        Args:
            store: Object storage backend
            gate: Execution gate consulted before any I/O
            clock: Source of "now" for signed URL expiry
            max_workers: Parallel uploads; 1 uploads sequentially
        """
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self.store = store
        self.gate = gate
        self.clock = clock
        self.max_workers = max_workers

    def publish(
        self,
        root: str | Path,
        container: str,
        sign: bool = False,
        signing: SigningPolicy | None = None,
        transforms: Iterable[AssetTransform] = (),
    ) -> list[PublishedObject]:
        """
        Upload every file below root to container.

        Args:
            root: Local directory to publish
            container: Target container
            sign: Also mint a signed read URL per object
            signing: Signing policy (default: 2 hours)
            transforms: Applied to each asset before upload

        Returns:
            One PublishedObject per file, in enumeration order

        Raises:
            PublishError: On the first unreadable file or failed upload
        """
        return self.gate.run(
            "publish-assets",
            self._publish,
            Path(root),
            container,
            (signing or SigningPolicy()) if sign else None,
            tuple(transforms),
            placeholder=[],
        )

    def _publish(
        self,
        root: Path,
        container: str,
        signing: SigningPolicy | None,
        transforms: tuple[AssetTransform, ...],
    ) -> list[PublishedObject]:
        assets = collect_assets(root, transforms)
        logger.info("publish_started", root=str(root), container=container, assets=len(assets))

        if self.max_workers == 1 or len(assets) <= 1:
            published = [self._upload(container, asset, signing) for asset in assets]
        else:
            published = self._upload_parallel(container, assets, signing)

        logger.info("publish_completed", root=str(root), container=container, objects=len(published))
        return published

    def _upload_parallel(
        self,
        container: str,
        assets: list[Asset],
        signing: SigningPolicy | None,
    ) -> list[PublishedObject]:
        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            futures = [pool.submit(self._upload, container, asset, signing) for asset in assets]
            done, pending = wait(futures, return_when=FIRST_EXCEPTION)

            for future in pending:
                future.cancel()

            for future in futures:
                if future in done and future.exception() is not None:
                    raise future.exception()  # type: ignore[misc]

            return [future.result() for future in futures]

    def _upload(self, container: str, asset: Asset, signing: SigningPolicy | None) -> PublishedObject:
        try:
            url = self.store.upload(container, asset.name, asset.content, asset.content_type)
        except Exception as e:
            raise PublishError(f"Upload of '{asset.name}' to '{container}' failed: {e}", asset.name) from e

        logger.info("asset_uploaded", asset=asset.name, container=container, content_type=asset.content_type)

        if signing is None:
            return PublishedObject(name=asset.name, content_type=asset.content_type, url=url)

        expires_at = self.clock() + signing.duration
        try:
            token = self.store.sign_read(container, asset.name, expires_at)
        except Exception as e:
            raise PublishError(f"Signing '{asset.name}' failed: {e}", asset.name) from e

        return PublishedObject(
            name=asset.name,
            content_type=asset.content_type,
            url=url,
            signed_url=f"{url}?{token.lstrip('?')}",
            expires_at=expires_at,
        )
