"""Resource persistence used by the reconcilers.

``ResourceClient`` is the seam between the reconcilers and whatever stores the
resources. Two implementations ship with the package: an in-memory store with
optimistic concurrency (used by the tests and for embedding) and a YAML file
store with one document per resource.
"""

import asyncio
import logging
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional, Type, TypeVar

from certissuer.errors import ConflictError, ResourceNotFoundError
from certissuer.models.meta import NamespacedName, Resource
from certissuer.services.yaml_service import YAMLService

logger = logging.getLogger("certissuer")

R = TypeVar("R", bound=Resource)

CLUSTER_SCOPE_DIR = "_cluster"


class ResourceClient(ABC):
    """Async access to stored resources."""

    @abstractmethod
    async def get(self, model: Type[R], key: NamespacedName) -> R:
        """
        Fetch a resource.

        Args:
            model: Resource model class (its ``kind`` selects the collection)
            key: Namespace and name

        Returns:
            A private copy of the stored resource

        Raises:
            ResourceNotFoundError: If no such resource exists
        """

    @abstractmethod
    async def update_status(self, obj: Resource) -> Resource:
        """
        Persist the status of a resource.

        Only ``status`` is written; spec and metadata in the store are kept.
        On success ``obj.metadata.resource_version`` is updated to the new
        stored version.

        Args:
            obj: Resource carrying the new status and the resource version it was read at

        Returns:
            The same object

        Raises:
            ResourceNotFoundError: If the resource was deleted
            ConflictError: If the stored resource version has moved on
        """

    @abstractmethod
    async def list_keys(self, model: Type[R], namespace: Optional[str] = None) -> list[NamespacedName]:
        """
        List the keys of stored resources of a kind.

        Args:
            model: Resource model class
            namespace: Only list this namespace (None lists all)

        Returns:
            Sorted resource keys
        """


def _check_status_update(stored: Resource, obj: Resource) -> None:
    if not hasattr(obj, "status"):
        raise TypeError(f"{type(obj).__name__} has no status")
    if stored.metadata.resource_version != obj.metadata.resource_version:
        raise ConflictError(
            f'{obj.kind} "{obj.key}" was modified: stored version '
            f"{stored.metadata.resource_version}, update based on {obj.metadata.resource_version}"
        )


class InMemoryResourceClient(ResourceClient):
    """Dictionary-backed resource store.

    Objects are deep-copied on the way in and out, so callers never share
    state with the store. Every write bumps the resource version.
    """

    def __init__(self):
        self._objects: dict[tuple[str, str, str], Resource] = {}
        self.status_updates = 0

    @staticmethod
    def _index(kind: str, key: NamespacedName) -> tuple[str, str, str]:
        return kind, key.namespace, key.name

    def add(self, *objs: Resource) -> None:
        """Create or replace resources (spec, metadata and status)."""
        for obj in objs:
            index = self._index(obj.kind, obj.key)
            stored = obj.model_copy(deep=True)
            previous = self._objects.get(index)
            version = previous.metadata.resource_version if previous else obj.metadata.resource_version
            stored.metadata.resource_version = version + 1
            self._objects[index] = stored
            obj.metadata.resource_version = stored.metadata.resource_version

    def delete(self, model: Type[Resource], key: NamespacedName) -> None:
        """Remove a resource if present."""
        self._objects.pop(self._index(model.kind, key), None)

    async def get(self, model: Type[R], key: NamespacedName) -> R:
        stored = self._objects.get(self._index(model.kind, key))
        if stored is None:
            raise ResourceNotFoundError(model.kind, key)
        return stored.model_copy(deep=True)

    async def update_status(self, obj: Resource) -> Resource:
        index = self._index(obj.kind, obj.key)
        stored = self._objects.get(index)
        if stored is None:
            raise ResourceNotFoundError(obj.kind, obj.key)
        _check_status_update(stored, obj)

        updated = stored.model_copy(deep=True)
        updated.status = obj.status.model_copy(deep=True)
        updated.metadata.resource_version += 1
        self._objects[index] = updated
        self.status_updates += 1

        obj.metadata.resource_version = updated.metadata.resource_version
        logger.debug(f'Updated status of {obj.kind} "{obj.key}" (version {updated.metadata.resource_version})')
        return obj

    async def list_keys(self, model: Type[R], namespace: Optional[str] = None) -> list[NamespacedName]:
        keys = [
            NamespacedName(namespace=ns, name=name)
            for kind, ns, name in self._objects
            if kind == model.kind and (namespace is None or ns == namespace)
        ]
        return sorted(keys, key=lambda k: (k.namespace, k.name))


class YAMLResourceClient(ResourceClient):
    """Resource store keeping one YAML document per resource.

    Layout: ``<root>/<kind>/<namespace or _cluster>/<name>.yaml``.
    """

    def __init__(self, root: Path):
        self.root = Path(root)
        self._write_lock = threading.Lock()

    def path_for(self, kind: str, key: NamespacedName) -> Path:
        """File holding a resource."""
        return self.root / kind.lower() / (key.namespace or CLUSTER_SCOPE_DIR) / f"{key.name}.yaml"

    def add(self, *objs: Resource) -> None:
        """Create or replace resources (spec, metadata and status)."""
        for obj in objs:
            path = self.path_for(obj.kind, obj.key)
            stored = obj.model_copy(deep=True)
            if path.exists():
                previous = YAMLService.load_model(path, type(obj))
                stored.metadata.resource_version = previous.metadata.resource_version + 1
            else:
                stored.metadata.resource_version = obj.metadata.resource_version + 1
            YAMLService.save_model(path, stored)
            obj.metadata.resource_version = stored.metadata.resource_version
            logger.info(f'Stored {obj.kind} "{obj.key}" at {path}')

    async def get(self, model: Type[R], key: NamespacedName) -> R:
        return await asyncio.to_thread(self._load, model, key)

    async def update_status(self, obj: Resource) -> Resource:
        return await asyncio.to_thread(self._update_status, obj)

    def _load(self, model: Type[R], key: NamespacedName) -> R:
        path = self.path_for(model.kind, key)
        if not path.exists():
            raise ResourceNotFoundError(model.kind, key)
        return YAMLService.load_model(path, model)

    def _update_status(self, obj: Resource) -> Resource:
        # Load, version check and save run in one worker call under the lock
        path = self.path_for(obj.kind, obj.key)
        with self._write_lock:
            if not path.exists():
                raise ResourceNotFoundError(obj.kind, obj.key)
            stored = YAMLService.load_model(path, type(obj))
            _check_status_update(stored, obj)

            stored.status = obj.status.model_copy(deep=True)
            stored.metadata.resource_version += 1
            YAMLService.save_model(path, stored)

        obj.metadata.resource_version = stored.metadata.resource_version
        logger.debug(f'Updated status of {obj.kind} "{obj.key}" in {path}')
        return obj

    async def list_keys(self, model: Type[R], namespace: Optional[str] = None) -> list[NamespacedName]:
        return await asyncio.to_thread(self._list_keys, model, namespace)

    def _list_keys(self, model: Type[R], namespace: Optional[str]) -> list[NamespacedName]:
        kind_dir = self.root / model.kind.lower()
        if not kind_dir.exists():
            return []

        keys = []
        for path in sorted(kind_dir.glob("*/*.yaml")):
            ns = "" if path.parent.name == CLUSTER_SCOPE_DIR else path.parent.name
            if namespace is None or ns == namespace:
                keys.append(NamespacedName(namespace=ns, name=path.stem))
        return sorted(keys, key=lambda k: (k.namespace, k.name))
