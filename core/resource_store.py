import logging
import threading
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

import requests

from schemas.resource import ResourceState, ResourceType, EngineState

logger = logging.getLogger(__name__)


class ResourceStore(ABC):
    """Durable store for resource documents. Each call is atomic per document."""

    @abstractmethod
    def find_resource(self, resource_type: ResourceType) -> Optional[ResourceState]:
        ...

    @abstractmethod
    def save(self, state: ResourceState) -> None:
        ...

    @abstractmethod
    def list_resources(self) -> List[ResourceState]:
        ...

    @abstractmethod
    def load_engine_state(self) -> EngineState:
        ...

    @abstractmethod
    def save_engine_state(self, state: EngineState) -> None:
        ...


class InMemoryResourceStore(ResourceStore):
    """Keeps deep copies so callers never share a document with the store."""

    def __init__(self):
        self._lock = threading.Lock()
        self._docs: Dict[ResourceType, ResourceState] = {}
        self._engine = EngineState()

    def find_resource(self, resource_type):
        with self._lock:
            doc = self._docs.get(ResourceType(resource_type))
            return doc.model_copy(deep=True) if doc else None

    def save(self, state):
        with self._lock:
            self._docs[state.resource_type] = state.model_copy(deep=True)

    def list_resources(self):
        with self._lock:
            return [d.model_copy(deep=True) for d in self._docs.values()]

    def load_engine_state(self):
        with self._lock:
            return self._engine.model_copy()

    def save_engine_state(self, state):
        with self._lock:
            self._engine = state.model_copy()


def _auth_headers(api_key: Optional[str]) -> dict:
    if api_key:
        return {"Authorization": f"Bearer {api_key}"}
    return {}


class BackendResourceStore(ResourceStore):
    """Resource documents kept by the shore backend:

      GET  {base}/resources/{type}   -> ResourceState JSON, 404 when missing
      PUT  {base}/resources/{type}   <- ResourceState JSON
      GET  {base}/resources          -> [ResourceState JSON]
      GET/PUT {base}/engine/state    <-> EngineState JSON
    """

    def __init__(self, api_base_url: str, api_key: Optional[str] = None, timeout: float = 10.0):
        if not api_base_url:
            raise ValueError("api_base_url is required for BackendResourceStore")
        self.base = api_base_url.rstrip("/")
        self.headers = _auth_headers(api_key)
        self.timeout = timeout

    def _url(self, path: str) -> str:
        return f"{self.base}{path}"

    def find_resource(self, resource_type):
        rtype = ResourceType(resource_type)
        resp = requests.get(self._url(f"/resources/{rtype.value}"), headers=self.headers, timeout=self.timeout)
        if resp.status_code == 404:
            return None
        if resp.status_code != 200:
            logger.error(f"[BackendStore] GET {rtype.value} failed: {resp.status_code} {resp.text}")
            raise RuntimeError(f"Backend returned error: {resp.status_code} - {resp.text}")
        return ResourceState.model_validate(resp.json())

    def save(self, state):
        url = self._url(f"/resources/{state.resource_type.value}")
        resp = requests.put(url, json=state.model_dump(mode="json"), headers=self.headers, timeout=self.timeout)
        if resp.status_code // 100 != 2:
            logger.error(f"[BackendStore] PUT {state.resource_type.value} failed: {resp.status_code} {resp.text}")
            raise RuntimeError(f"Backend returned error: {resp.status_code} - {resp.text}")
        logger.debug(f"[BackendStore] Saved {state.resource_type.value} level={state.level:.2f}")

    def list_resources(self):
        resp = requests.get(self._url("/resources"), headers=self.headers, timeout=self.timeout)
        if resp.status_code != 200:
            raise RuntimeError(f"Backend returned error: {resp.status_code} - {resp.text}")
        return [ResourceState.model_validate(d) for d in resp.json()]

    def load_engine_state(self):
        resp = requests.get(self._url("/engine/state"), headers=self.headers, timeout=self.timeout)
        if resp.status_code == 404:
            return EngineState()
        if resp.status_code != 200:
            raise RuntimeError(f"Backend returned error: {resp.status_code} - {resp.text}")
        return EngineState.model_validate(resp.json())

    def save_engine_state(self, state):
        resp = requests.put(self._url("/engine/state"), json=state.model_dump(mode="json"),
                            headers=self.headers, timeout=self.timeout)
        if resp.status_code // 100 != 2:
            raise RuntimeError(f"Backend returned error: {resp.status_code} - {resp.text}")
