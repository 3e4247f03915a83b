"""Reads the live objects tracked by an Application."""

import logging

from gitops_sync.exceptions import (
    ClusterUnreachable,
    GitOpsException,
    InputException,
    PermissionDenied,
    ReconcileTimeout,
)
from gitops_sync.manifest import (
    ApplicationDestination,
    KindInfo,
    LiveObjectSet,
    ManagedObject,
)

from .client import ClusterClient, DEFAULT_PAGE_SIZE

_LOGGER = logging.getLogger(__name__)

__all__ = ["ClusterStateReader"]


class ClusterStateReader:
    """Lists every object matching a selector on a destination cluster.

    Failures listing an individual kind are recorded in the result rather
    than failing the whole read, so the diff can still reconcile the kinds
    that were readable.
    """

    def __init__(self, client: ClusterClient, page_size: int = DEFAULT_PAGE_SIZE):
        self._client = client
        self._page_size = page_size

    async def list(
        self, destination: ApplicationDestination, selector: dict[str, str]
    ) -> LiveObjectSet:
        """Return the live objects matching the selector.

        Raises:
            ClusterUnreachable: If the kinds could not be discovered, or no
                kind could be listed.
            PermissionDenied: If every kind was forbidden.
        """
        if destination.server != self._client.server:
            raise InputException(
                f"Client for {self._client.server} cannot read destination "
                f"{destination.server}"
            )
        kinds = await self._client.list_kinds()
        result = LiveObjectSet()
        failures: list[GitOpsException] = []
        for kind in kinds:
            try:
                await self._list_kind(kind, destination, selector, result)
            except (ClusterUnreachable, PermissionDenied, ReconcileTimeout) as err:
                _LOGGER.warning(
                    "Unable to list %s on %s: %s", kind.key, self._client.server, err
                )
                result.errors[kind.key] = str(err)
                failures.append(err)
        if kinds and len(failures) == len(kinds):
            if all(isinstance(err, PermissionDenied) for err in failures):
                raise PermissionDenied(
                    f"Unable to list any objects on {destination.server}: {failures[0]}"
                )
            raise ClusterUnreachable(
                f"Unable to list any objects on {destination.server}: {failures[0]}"
            )
        _LOGGER.debug(
            "Read %d live objects from %s (%d kinds failed)",
            len(result),
            destination.server,
            len(result.errors),
        )
        return result

    async def _list_kind(
        self,
        kind: KindInfo,
        destination: ApplicationDestination,
        selector: dict[str, str],
        result: LiveObjectSet,
    ) -> None:
        try:
            await self._list_pages(kind, None, selector, result)
        except PermissionDenied:
            if not kind.namespaced:
                raise
            # Fall back to the destination namespace when not allowed to
            # list across all namespaces.
            _LOGGER.debug(
                "Listing %s across namespaces forbidden, using %s",
                kind.key,
                destination.namespace,
            )
            await self._list_pages(kind, destination.namespace, selector, result)

    async def _list_pages(
        self,
        kind: KindInfo,
        namespace: str | None,
        selector: dict[str, str],
        result: LiveObjectSet,
    ) -> None:
        continue_token: str | None = None
        while True:
            page = await self._client.list_page(
                kind,
                namespace if kind.namespaced else None,
                selector,
                continue_token=continue_token,
                limit=self._page_size,
            )
            for item in page.items:
                try:
                    result.add(ManagedObject.parse_doc(item))
                except InputException as err:
                    _LOGGER.warning("Ignoring unparseable live object: %s", err)
            if not (continue_token := page.continue_token):
                break
