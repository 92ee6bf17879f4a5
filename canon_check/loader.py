"""Load artifacts from disk: front matter metadata, type inference, fingerprint."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Iterable

import frontmatter

from .models import ARTIFACT_TYPES, Artifact, ArtifactMetadata, ArtifactType
from .rules.schema import SCOPE_FIELDS

DOCUMENT_SUFFIXES = {".md", ".markdown", ".mdx", ".rst", ".txt", ".adoc"}
COMMIT_NAMES = {"commit_editmsg", "merge_msg"}


def infer_type(path: Path) -> ArtifactType:
    if path.name.lower() in COMMIT_NAMES or path.suffix.lower() in {".commit", ".msg"}:
        return "commit"
    if path.suffix.lower() in DOCUMENT_SUFFIXES or not path.suffix:
        return "document"
    return "code"


def _front_matter_metadata(meta: dict[str, Any]) -> dict[str, str]:
    out: dict[str, str] = {}
    for name in SCOPE_FIELDS:
        # Accept both document_type and document-type spellings.
        value = meta.get(name, meta.get(name.replace("_", "-")))
        if value is not None and not isinstance(value, (list, dict)):
            out[name] = str(value)
    return out


def parse_artifact(
    text: str,
    *,
    artifact_type: ArtifactType | None = None,
    origin: Path | None = None,
    **metadata: str | None,
) -> Artifact:
    """
    Build an Artifact from raw text.

    Documents carry their metadata in YAML front matter; the body after it is
    the content checked. The text before the body is kept as the artifact
    prefix so evidence lines match the file. Explicit keyword metadata wins
    over front matter.
    """
    kind = artifact_type or (infer_type(origin) if origin is not None else "document")
    if kind not in ARTIFACT_TYPES:
        raise ValueError(f"unknown artifact type {kind!r}")

    meta: dict[str, str] = {}
    content = text
    prefix = ""
    if kind == "document":
        try:
            post = frontmatter.loads(text)
        except Exception as e:
            where = f"{origin}: " if origin else ""
            raise ValueError(f"{where}malformed front matter: {e}") from e
        meta = _front_matter_metadata(post.metadata)
        content = post.content
        # The parser strips the body, so it is always the last occurrence.
        prefix = text[: text.rfind(content)] if content else text

    for name, value in metadata.items():
        if name not in SCOPE_FIELDS:
            raise TypeError(f"unknown metadata field {name!r}")
        if value:
            meta[name] = value

    return Artifact(
        content=content,
        type=kind,
        metadata=ArtifactMetadata(**meta),
        origin=origin,
        prefix=prefix,
    )


def load_artifact(
    path: Path,
    *,
    artifact_type: ArtifactType | None = None,
    **metadata: str | None,
) -> Artifact:
    """Read a file and parse it as an artifact."""
    text = path.read_text(encoding="utf-8")
    return parse_artifact(text, artifact_type=artifact_type, origin=path.resolve(), **metadata)


def collect_documents(paths: Iterable[Path]) -> list[Path]:
    """
    Expand paths into the files to evaluate.

    Files are taken as given. Directories contribute every document below them
    (by suffix), skipping hidden files and directories such as ``.canon`` and
    ``.git``. Order is stable and duplicates are dropped.
    """
    found: list[Path] = []
    seen: set[Path] = set()
    for path in paths:
        if path.is_dir():
            candidates = sorted(
                p
                for p in path.rglob("*")
                if p.is_file()
                and p.suffix.lower() in DOCUMENT_SUFFIXES
                and not any(part.startswith(".") for part in p.relative_to(path).parts)
            )
            if not candidates:
                raise ValueError(f"{path}: no documents found")
        else:
            candidates = [path]
        for candidate in candidates:
            key = candidate.resolve()
            if key not in seen:
                seen.add(key)
                found.append(candidate)
    return found
