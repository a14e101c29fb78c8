"""
Reference reconciliation between a record's committed assets and an edit.
"""

from dataclasses import dataclass, field

from api.assets.models import AssetReference


@dataclass
class Reconciliation:
    final: list[AssetReference] = field(default_factory=list)
    to_remove: list[AssetReference] = field(default_factory=list)


def retained_references(
    previous: list[AssetReference],
    retained_by_client: list[AssetReference],
) -> list[AssetReference]:
    """
    Keep only the client-retained references the record actually holds,
    in the client's order and without duplicates.
    """
    owned = set(previous)
    return [ref for ref in dict.fromkeys(retained_by_client) if ref in owned]


def reconcile(
    previous: list[AssetReference],
    retained_by_client: list[AssetReference],
    newly_uploaded: list[AssetReference],
) -> Reconciliation:
    """
    Compute a record's final reference list and the references to prune.

    Args:
        previous: References on the committed record (server state)
        retained_by_client: References the client asked to keep
        newly_uploaded: References uploaded during this edit

    Returns:
        Reconciliation where final is retained + new and to_remove is every
        previous reference that was not retained
    """
    retained = retained_references(previous, retained_by_client)
    kept = set(retained)
    return Reconciliation(
        final=retained + list(newly_uploaded),
        to_remove=[ref for ref in dict.fromkeys(previous) if ref not in kept],
    )
