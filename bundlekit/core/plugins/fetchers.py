from __future__ import annotations

"""Plugin fetchers.

A fetcher answers two questions for the install workflow: which version a
source offers for a requirement (:meth:`Fetcher.resolve`) and how that version
gets onto disk (:meth:`Fetcher.fetch`). :class:`SourceFetcher` dispatches on
the source kind:

- ``registry``: a repository of ``<name>-<version>`` directories or
  ``<name>-<version>.zip`` archives. Local directories and ``file://`` URLs
  are read directly; ``http(s)://`` repositories publish an ``index.json``
  (``{"<name>": ["<version>", ...]}``) next to the archives.
- ``path``: a directory the user maintains, used in place.
- ``git``: a checkout made with the ``git`` executable.
"""

import json
import logging
import re
import shutil
import subprocess
import tempfile
import zipfile
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Protocol, Tuple
from urllib.parse import unquote, urlparse

import requests
from packaging.specifiers import SpecifierSet
from packaging.version import InvalidVersion, Version

from .exceptions import MalformattedPlugin, PluginInstallError, PluginNotFoundError
from .metadata import PluginMetadata, read_plugin_metadata
from .models import SourceDescriptor, SourceKind, format_requirement

logger = logging.getLogger(__name__)

GEMS_DIR = "gems"
GIT_DIR = "git"


@dataclass
class FetchResult:
    """A plugin payload placed on disk."""

    version: Version
    install_path: str
    load_paths: List[str]
    metadata: Optional[PluginMetadata] = None
    managed: bool = True


class Fetcher(Protocol):
    """Transport used by the install workflow."""

    def resolve(self, name: str, requirement: SpecifierSet, source: SourceDescriptor) -> Version:
        ...

    def fetch(self, name: str, version: Version, source: SourceDescriptor, root: Path) -> FetchResult:
        ...

    def cleanup(self) -> None:
        ...


def _not_found(name: str, requirement: SpecifierSet, source: SourceDescriptor) -> PluginNotFoundError:
    return PluginNotFoundError(
        f"Could not find plugin '{name} ({format_requirement(requirement)})' in {source}.",
        plugin_id=name,
        source=source.uri
    )


def _best_match(versions: Iterable[Version], requirement: SpecifierSet) -> Optional[Version]:
    candidates = list(requirement.filter(versions))
    return max(candidates) if candidates else None


def _describe_payload(name: str, install_dir: Path, fallback: Optional[Version],
                      managed: bool) -> FetchResult:
    """Read the metadata of a payload already on disk and build its result.

    Raises:
        MalformattedPlugin: If the metadata file is invalid or names another plugin
    """
    metadata = read_plugin_metadata(install_dir, name)
    if metadata is not None and metadata.name != name:
        raise MalformattedPlugin(
            f"Metadata file declares plugin '{metadata.name}'",
            plugin_id=name
        )

    if metadata is not None:
        version = metadata.parsed_version
        if fallback is not None and version != fallback:
            logger.warning("Plugin %s: metadata version %s differs from fetched version %s",
                           name, version, fallback)
        load_paths = metadata.full_require_paths()
    else:
        version = fallback if fallback is not None else Version("0")
        load_paths = [str((install_dir / "lib").resolve())]

    return FetchResult(
        version=version,
        install_path=str(install_dir.resolve()),
        load_paths=load_paths,
        metadata=metadata,
        managed=managed
    )


def _discard(path: Path) -> None:
    if path.exists():
        shutil.rmtree(path, ignore_errors=True)
        logger.debug("Removed partial payload: %s", path)


def _local_path(uri: str) -> Optional[Path]:
    parsed = urlparse(uri)
    if parsed.scheme == "file":
        return Path(unquote(parsed.path))
    if parsed.scheme in ("http", "https"):
        return None
    return Path(uri).expanduser()


# -------------------------------------------------------------------------
# Registry repositories
# -------------------------------------------------------------------------

class RepositoryFetcher:
    """Fetches versioned plugin payloads from a repository."""

    def __init__(self, timeout: int = 30) -> None:
        self._logger = logging.getLogger(f"{__name__}.RepositoryFetcher")
        self._request_timeout = timeout
        self._user_agent = "bundlekit-plugin-installer"

    # -------------------------------------------------------------------------
    # Fetcher API
    # -------------------------------------------------------------------------

    def resolve(self, name: str, requirement: SpecifierSet, source: SourceDescriptor) -> Version:
        versions = self.available_versions(name, source)
        best = _best_match(versions, requirement)
        if best is None:
            raise _not_found(name, requirement, source)
        self._logger.debug("Resolved %s (%s) to %s from %s",
                           name, format_requirement(requirement), best, source.uri)
        return best

    def fetch(self, name: str, version: Version, source: SourceDescriptor, root: Path) -> FetchResult:
        target = Path(root) / GEMS_DIR / f"{name}-{version}"
        _discard(target)
        target.parent.mkdir(parents=True, exist_ok=True)

        try:
            repository = _local_path(source.uri)
            if repository is not None:
                self._copy_local(name, version, repository, target, source)
            else:
                self._download(name, version, source, target)
            return _describe_payload(name, target, version, managed=True)
        except (OSError, zipfile.BadZipFile) as e:
            _discard(target)
            raise PluginInstallError(f"Could not unpack {name}-{version}: {e}", plugin_id=name, cause=e)
        except Exception:
            _discard(target)
            raise

    def cleanup(self) -> None:
        pass

    # -------------------------------------------------------------------------
    # Version listing
    # -------------------------------------------------------------------------

    def available_versions(self, name: str, source: SourceDescriptor) -> List[Version]:
        repository = _local_path(source.uri)
        if repository is not None:
            return [v for v, _ in self._local_entries(name, repository)]
        return self._remote_versions(name, source)

    def _local_entries(self, name: str, repository: Path) -> List[Tuple[Version, Path]]:
        if not repository.is_dir():
            raise PluginNotFoundError(
                f"Plugin repository {repository} does not exist",
                plugin_id=name,
                source=str(repository)
            )
        pattern = re.compile(rf"^{re.escape(name)}-(.+?)(\.zip)?$")
        try:
            listing = list(repository.iterdir())
        except OSError as e:
            raise PluginInstallError(
                f"Could not read plugin repository {repository}: {e}", plugin_id=name, cause=e
            )
        entries: List[Tuple[Version, Path]] = []
        for entry in listing:
            match = pattern.match(entry.name)
            if not match:
                continue
            if match.group(2) and not entry.is_file():
                continue
            if not match.group(2) and not entry.is_dir():
                continue
            try:
                entries.append((Version(match.group(1)), entry))
            except InvalidVersion:
                continue
        return entries

    def _remote_versions(self, name: str, source: SourceDescriptor) -> List[Version]:
        url = f"{source.uri.rstrip('/')}/index.json"
        try:
            response = requests.get(url, timeout=self._request_timeout,
                                    headers={"User-Agent": self._user_agent})
            if response.status_code == 404:
                raise PluginNotFoundError(f"No plugin index at {url}", plugin_id=name, source=source.uri)
            response.raise_for_status()
            listing = response.json()
        except requests.exceptions.Timeout as e:
            raise PluginInstallError(f"Request timeout while fetching {url}", plugin_id=name, cause=e)
        except requests.exceptions.RequestException as e:
            raise PluginInstallError(f"Request failed for {url}: {e}", plugin_id=name, cause=e)
        except ValueError as e:
            raise PluginInstallError(f"Invalid JSON in {url}: {e}", plugin_id=name, cause=e)

        versions: List[Version] = []
        for text in (listing.get(name) or []) if isinstance(listing, dict) else []:
            try:
                versions.append(Version(str(text)))
            except InvalidVersion:
                self._logger.debug("Skipping invalid version %r of %s in %s", text, name, url)
        return versions

    # -------------------------------------------------------------------------
    # Payload transfer
    # -------------------------------------------------------------------------

    def _copy_local(self, name: str, version: Version, repository: Path,
                    target: Path, source: SourceDescriptor) -> None:
        for entry_version, entry in self._local_entries(name, repository):
            if entry_version != version:
                continue
            if entry.is_dir():
                shutil.copytree(entry, target)
            else:
                self._extract_zip_archive(entry, target)
            self._logger.debug("Copied %s to %s", entry, target)
            return
        raise PluginNotFoundError(
            f"Could not find plugin '{name} (= {version})' in {source}.",
            plugin_id=name,
            source=source.uri
        )

    def _download(self, name: str, version: Version, source: SourceDescriptor, target: Path) -> None:
        url = f"{source.uri.rstrip('/')}/{name}-{version}.zip"
        self._logger.info("Downloading %s", url)
        fd, tmp_name = tempfile.mkstemp(suffix=".zip", dir=str(target.parent))
        tmp_path = Path(tmp_name)
        try:
            with open(fd, "wb") as handle:
                with requests.get(url, stream=True, timeout=self._request_timeout,
                                  headers={"User-Agent": self._user_agent}) as response:
                    if response.status_code == 404:
                        raise PluginNotFoundError(
                            f"Could not find plugin '{name} (= {version})' in {source}.",
                            plugin_id=name,
                            source=source.uri
                        )
                    response.raise_for_status()
                    for chunk in response.iter_content(chunk_size=65536):
                        handle.write(chunk)
            self._extract_zip_archive(tmp_path, target)
        except requests.exceptions.RequestException as e:
            raise PluginInstallError(f"Download failed for {url}: {e}", plugin_id=name, cause=e)
        finally:
            if tmp_path.exists():
                tmp_path.unlink()

    def _extract_zip_archive(self, zip_path: Path, target: Path) -> None:
        """Extract a plugin archive into ``target``.

        An archive holding a single top-level directory is unwrapped.

        Raises:
            PluginInstallError: If the archive contains unsafe entries
        """
        with zipfile.ZipFile(zip_path, 'r') as zip_file:
            for file_info in zip_file.infolist():
                if self._is_suspicious_zip_entry(file_info):
                    raise PluginInstallError(
                        f"ZIP archive contains suspicious file: {file_info.filename}"
                    )
            zip_file.extractall(target)

        children = list(target.iterdir())
        if len(children) == 1 and children[0].is_dir():
            inner = children[0]
            for item in list(inner.iterdir()):
                shutil.move(str(item), str(target / item.name))
            inner.rmdir()

    def _is_suspicious_zip_entry(self, file_info: zipfile.ZipInfo) -> bool:
        filename = file_info.filename

        # Directory traversal
        if ".." in Path(filename).parts or filename.startswith("/"):
            return True

        if Path(filename).is_absolute() or re.match(r"^[A-Za-z]:", filename):
            return True

        return False


# -------------------------------------------------------------------------
# Path sources
# -------------------------------------------------------------------------

class PathFetcher:
    """Uses a plugin directory in place.

    Args:
        cwd: Directory relative paths are resolved against
    """

    def __init__(self, cwd: Optional[Path] = None) -> None:
        self._cwd = Path(cwd) if cwd else None

    def _directory(self, source: SourceDescriptor) -> Path:
        path = Path(source.uri).expanduser()
        if not path.is_absolute():
            path = (self._cwd or Path.cwd()) / path
        return path.resolve()

    def _version(self, name: str, directory: Path) -> Version:
        try:
            metadata = read_plugin_metadata(directory, name)
        except MalformattedPlugin:
            metadata = None
        if metadata is not None:
            return metadata.parsed_version
        prefix = f"{name}-"
        if directory.name.startswith(prefix):
            try:
                return Version(directory.name[len(prefix):])
            except InvalidVersion:
                pass
        return Version("0")

    def resolve(self, name: str, requirement: SpecifierSet, source: SourceDescriptor) -> Version:
        directory = self._directory(source)
        if not directory.is_dir():
            raise PluginNotFoundError(
                f"Could not find plugin '{name}' at path {directory}",
                plugin_id=name,
                source=str(directory)
            )
        version = self._version(name, directory)
        if not requirement.contains(version, prereleases=True):
            raise _not_found(name, requirement, source)
        return version

    def fetch(self, name: str, version: Version, source: SourceDescriptor, root: Path) -> FetchResult:
        return _describe_payload(name, self._directory(source), version, managed=False)

    def cleanup(self) -> None:
        pass


# -------------------------------------------------------------------------
# Git sources
# -------------------------------------------------------------------------

class GitFetcher:
    """Checks plugins out of git repositories.

    :meth:`resolve` clones into a scratch directory to read the plugin
    version; :meth:`fetch` moves that checkout under ``<root>/git``.
    """

    def __init__(self, git: str = "git", timeout: int = 300) -> None:
        self._logger = logging.getLogger(f"{__name__}.GitFetcher")
        self._git = git
        self._timeout = timeout
        self._checkouts: Dict[Tuple[str, SourceDescriptor], Tuple[Path, str]] = {}
        self._scratch: List[Path] = []

    def resolve(self, name: str, requirement: SpecifierSet, source: SourceDescriptor) -> Version:
        checkout, _ = self._checkout(name, source)
        try:
            version = _describe_payload(name, checkout, None, managed=True).version
        except MalformattedPlugin:
            version = Version("0")
        if not requirement.contains(version, prereleases=True):
            raise _not_found(name, requirement, source)
        return version

    def fetch(self, name: str, version: Version, source: SourceDescriptor, root: Path) -> FetchResult:
        checkout, revision = self._checkout(name, source)
        target = Path(root) / GIT_DIR / f"{name}-{revision[:12]}"
        _discard(target)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.move(str(checkout), str(target))
        except OSError as e:
            _discard(target)
            raise PluginInstallError(f"Could not place checkout of {name}: {e}", plugin_id=name, cause=e)
        finally:
            self._checkouts.pop((name, source), None)

        try:
            return _describe_payload(name, target, version, managed=True)
        except Exception:
            _discard(target)
            raise

    def cleanup(self) -> None:
        for scratch in self._scratch:
            shutil.rmtree(scratch, ignore_errors=True)
        self._scratch.clear()
        self._checkouts.clear()

    # -------------------------------------------------------------------------
    # git plumbing
    # -------------------------------------------------------------------------

    def _checkout(self, name: str, source: SourceDescriptor) -> Tuple[Path, str]:
        key = (name, source)
        if key in self._checkouts:
            return self._checkouts[key]

        scratch = Path(tempfile.mkdtemp(prefix="bundlekit-git-"))
        self._scratch.append(scratch)
        checkout = scratch / name

        clone = [self._git, "clone", "--quiet"]
        if source.branch:
            clone += ["--branch", source.branch]
        clone += [source.uri, str(checkout)]
        self._run(name, source, clone)

        if source.ref:
            self._run(name, source, [self._git, "-C", str(checkout), "checkout", "--quiet", source.ref])

        revision = self._run(name, source, [self._git, "-C", str(checkout), "rev-parse", "HEAD"]).strip()
        self._checkouts[key] = (checkout, revision)
        self._logger.debug("Checked out %s at %s", source, revision)
        return checkout, revision

    def _run(self, name: str, source: SourceDescriptor, cmd: List[str]) -> str:
        self._logger.debug("Running git command: %s", " ".join(cmd))
        try:
            result = subprocess.run(cmd, capture_output=True, text=True, timeout=self._timeout)
        except FileNotFoundError as e:
            raise PluginInstallError(f"git executable not found: {self._git}", plugin_id=name, cause=e)
        except subprocess.TimeoutExpired as e:
            raise PluginInstallError(f"Timeout running git for {source}", plugin_id=name, cause=e)

        if result.returncode != 0:
            raise PluginNotFoundError(
                f"Could not fetch plugin '{name}' from {source}: {result.stderr.strip()}",
                plugin_id=name,
                source=source.uri
            )
        return result.stdout


# -------------------------------------------------------------------------
# Dispatch
# -------------------------------------------------------------------------

class SourceFetcher:
    """Default fetcher: routes each request to the fetcher for its source kind."""

    def __init__(self, cwd: Optional[Path] = None,
                 fetchers: Optional[Dict[SourceKind, Fetcher]] = None) -> None:
        self._fetchers: Dict[SourceKind, Fetcher] = {
            SourceKind.REGISTRY: RepositoryFetcher(),
            SourceKind.PATH: PathFetcher(cwd),
            SourceKind.GIT: GitFetcher(),
        }
        if fetchers:
            self._fetchers.update(fetchers)

    def _for(self, source: SourceDescriptor) -> Fetcher:
        return self._fetchers[source.kind]

    def resolve(self, name: str, requirement: SpecifierSet, source: SourceDescriptor) -> Version:
        return self._for(source).resolve(name, requirement, source)

    def fetch(self, name: str, version: Version, source: SourceDescriptor, root: Path) -> FetchResult:
        return self._for(source).fetch(name, version, source, root)

    def cleanup(self) -> None:
        for fetcher in self._fetchers.values():
            fetcher.cleanup()
