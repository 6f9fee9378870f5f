"""Writes generated policies and profiles to the output directory."""

from __future__ import annotations

import logging
from pathlib import Path

logger = logging.getLogger(__name__)


class PolicyWriter:
    """Writes one file per pod and kind.

    File names are ``<namespace>-<name>-<kind>.<ext>``, so concurrent writes
    for different pods never touch the same file.
    """

    def __init__(self, output_dir: Path | str) -> None:
        self.output_dir = Path(output_dir)

    def prepare(self) -> None:
        self.output_dir.mkdir(parents=True, exist_ok=True)

    def path_for(self, namespace: str, name: str, kind: str, ext: str = "yaml") -> Path:
        return self.output_dir / f"{namespace}-{name}-{kind}.{ext}"

    def write(
        self,
        namespace: str,
        name: str,
        kind: str,
        content: str,
        ext: str = "yaml",
    ) -> Path:
        path = self.path_for(namespace, name, kind, ext)
        path.write_text(content)
        logger.info("Wrote %s", path)
        return path
