import copy
import logging
from typing import Any, Protocol

from kubectl_assert_eventually.errors import NotFound, StoreError
from kubectl_assert_eventually.model import ObjectRef

logger = logging.getLogger(__name__)


class Store(Protocol):
    """
    Read side of a remote object store. Reads never mutate the store.
    """

    def get(
        self, namespace: str, name: str, group: str, version: str, kind: str
    ) -> dict[str, Any]: ...


# ----------------------------
# Live cluster store
# ----------------------------


class KubernetesStore:
    """
    Point reads against a live API server through the dynamic client,
    so custom resources work without generated models.
    """

    def __init__(self, api_client=None, dynamic_client=None):
        from kubernetes.dynamic import DynamicClient

        if dynamic_client is None:
            # Discovery runs on construction and needs a reachable API server
            try:
                dynamic_client = DynamicClient(api_client)
            except Exception as exc:
                raise StoreError(f"cannot reach API server: {exc}") from exc
        self._client = dynamic_client

    @classmethod
    def from_kubeconfig(
        cls, kubeconfig: str | None = None, context: str | None = None
    ) -> "KubernetesStore":
        from kubernetes import config as kube_config

        try:
            api_client = kube_config.new_client_from_config(
                config_file=kubeconfig, context=context
            )
        except kube_config.ConfigException as exc:
            if kubeconfig:
                raise StoreError(f"cannot load kubeconfig {kubeconfig}: {exc}") from exc
            logger.debug("No kubeconfig usable (%s), trying in-cluster config", exc)
            from kubernetes.client import ApiClient

            try:
                kube_config.load_incluster_config()
            except kube_config.ConfigException as incluster_exc:
                raise StoreError(
                    f"no usable kubeconfig and not running in a cluster: {incluster_exc}"
                ) from incluster_exc
            api_client = ApiClient()
        return cls(api_client=api_client)

    def get(
        self, namespace: str, name: str, group: str, version: str, kind: str
    ) -> dict[str, Any]:
        from kubernetes.dynamic.exceptions import (
            DynamicApiError,
            NotFoundError,
            ResourceNotFoundError,
        )

        api_version = f"{group}/{version}" if group else version
        where = f"{kind}.{api_version} {namespace}/{name}"
        try:
            resource = self._client.resources.get(api_version=api_version, kind=kind)
            obj = resource.get(name=name, namespace=namespace)
        except NotFoundError as exc:
            raise NotFound(f"{where} not found") from exc
        except ResourceNotFoundError as exc:
            raise StoreError(f"{kind}.{api_version} is not served: {exc}") from exc
        except DynamicApiError as exc:
            raise StoreError(f"cannot get {where}: {exc.summary()}") from exc
        except Exception as exc:
            raise StoreError(f"cannot get {where}: {exc}") from exc

        return obj.to_dict()


# ----------------------------
# Accessor
# ----------------------------


class ObjectAccessor:
    def __init__(self, store: Store):
        self.store = store

    def get(self, ref: ObjectRef) -> dict[str, Any]:
        """
        Fetch `ref` and return a private copy of its full state.

        Raises InvalidReference for malformed coordinates and
        NotFound / StoreError when the read fails. No retries here.
        """
        ref.validate()
        group, version = ref.group_version()

        logger.debug("GET %s", ref)
        try:
            obj = self.store.get(ref.namespace, ref.name, group, version, ref.kind)
        except StoreError as exc:
            if exc.ref is None:
                exc.ref = ref
            raise

        return copy.deepcopy(obj)
