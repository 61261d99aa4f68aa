"""
Mirror Builder - Derive the desired copy of a source secret.
"""

from __future__ import annotations

from ..models.objects import PROVENANCE_ANNOTATION, SecretSnapshot


def build_duplicate(source: SecretSnapshot, namespace: str) -> SecretSnapshot:
    """
    Build the canonical duplicate of ``source`` for ``namespace``.

    Only the provenance annotation is set. Labels and the source's other
    annotations are deliberately not copied.
    """
    return SecretSnapshot(
        namespace=namespace,
        name=source.name,
        type=source.type,
        data=source.data,
        annotations={PROVENANCE_ANNOTATION: source.key},
    )


def duplicate_matches(duplicate: SecretSnapshot, source: SecretSnapshot) -> bool:
    """True when the copy's payload and type equal the source's."""
    return duplicate.data == source.data and duplicate.type == source.type
