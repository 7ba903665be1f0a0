import os
from pathlib import Path

from secure_intake.pipeline.exceptions import PathConfigurationError


def is_contained(root: Path, candidate: Path) -> bool:
    """True when canonical ``candidate`` is ``root`` or lies beneath it."""
    root_text = os.path.normcase(str(root))
    candidate_text = os.path.normcase(str(candidate))
    if candidate_text == root_text:
        return True
    return candidate_text.startswith(root_text.rstrip(os.sep) + os.sep)


class PathResolver:
    """Resolves storage directories and file targets inside a fixed root.

    The root is canonicalized once on construction. Every directory and every
    write target is canonicalized again and checked against it, so a symlink
    or ``..`` introduced by configuration cannot move writes outside the root.
    """

    def __init__(self, storage_root: str | os.PathLike[str]) -> None:
        root = Path(storage_root).expanduser()
        if not root.is_absolute():
            root = Path.cwd() / root
        root.mkdir(parents=True, exist_ok=True)
        self._root = root.resolve()

    @property
    def root(self) -> Path:
        return self._root

    def resolve_container(self, subdir: str) -> Path:
        """Return the canonical directory for ``subdir``, creating it if absent.

        Raises:
            PathConfigurationError: if ``subdir`` is not a relative name or the
                canonical directory escapes the storage root.
        """
        relative = Path(subdir)
        if relative.is_absolute() or not subdir.strip():
            raise PathConfigurationError(f"storage subdirectory must be relative: {subdir!r}")
        container = (self._root / relative).resolve()
        if not is_contained(self._root, container):
            raise PathConfigurationError(
                f"storage subdirectory {subdir!r} resolves outside the storage root"
            )
        try:
            container.mkdir(parents=True, exist_ok=True)
        except FileExistsError as exc:
            raise PathConfigurationError(
                f"storage subdirectory {subdir!r} exists and is not a directory"
            ) from exc
        # mkdir may have followed a symlink created between resolve() and now
        if not is_contained(self._root, container.resolve()):
            raise PathConfigurationError(
                f"storage subdirectory {subdir!r} resolves outside the storage root"
            )
        return container

    def resolve_target(self, container: Path, name: str) -> Path:
        """Join ``name`` onto ``container`` and re-check containment before a write."""
        if not name or Path(name).name != name or name in (".", ".."):
            raise PathConfigurationError(f"invalid storage name: {name!r}")
        target = container / name
        canonical_parent = target.parent.resolve()
        if not is_contained(self._root, canonical_parent):
            raise PathConfigurationError("write target resolves outside the storage root")
        if target.is_symlink():
            raise PathConfigurationError("write target is a symlink")
        return canonical_parent / name
