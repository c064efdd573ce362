"""Existence checks for named cluster objects."""

from __future__ import annotations

from kd.errors import ClusterClientError
from kd.kubernetes.client import NOT_FOUND_MARKER, ClusterClient
from kd.observability.logging import get_logger


log = get_logger(__name__)


async def resource_exists(client: ClusterClient, kind: str, name: str) -> bool:
    """Return whether ``kind/name`` exists in the cluster.

    Only the object's name is fetched. A failure mentioning ``NotFound``
    means the object is absent; any other failure propagates, so a
    transient error is never mistaken for absence.

    Raises:
        ClusterClientError: If the lookup failed for another reason.
    """
    try:
        found = await client.fetch_field(kind, name, ".metadata.name")
    except ClusterClientError as e:
        if NOT_FOUND_MARKER in str(e) or NOT_FOUND_MARKER in e.stderr:
            log.debug("resource_not_found", kind=kind, name=name)
            return False
        raise
    return found.strip() == name
