"""
State Registry

Maps state names to their declared types and routes loads and saves to the
storage backend for each persist mode. Per-request work happens in a
``StateContext`` bound to one session.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Type

from pydantic import ValidationError

from ..errors import ConfigError, NotFoundError
from ..persistence import (
    ClientLocalStorage,
    DatabaseStorage,
    EphemeralStorage,
    SHARED_SESSION_ID,
    MemoryCache,
    RedisCache,
    StateStorage,
)
from .descriptors import PersistMode, StateSchema, StateScope, derive_state_name
from .proxy import StateProxy

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RegistryEntry:
    """A registered state type."""
    name: str
    state_type: Type
    schema: StateSchema


class StateRegistry:
    """
    Table of registered state types and their storage backends.

    Args:
        storages: Backend per persist mode. ``session`` and ``local`` get
            in-process defaults; ``database`` has no default.
        bus: Event bus handed to every proxy created from this registry
    """

    def __init__(self, storages: Optional[Mapping[PersistMode, StateStorage]] = None, bus=None):
        self.storages: Dict[PersistMode, StateStorage] = {
            PersistMode.SESSION: EphemeralStorage(),
            PersistMode.LOCAL: ClientLocalStorage(),
        }
        for mode, storage in (storages or {}).items():
            self.storages[PersistMode(mode)] = storage
        self.bus = bus
        self._entries: Dict[str, RegistryEntry] = {}

    @classmethod
    def from_config(cls, config, bus=None) -> 'StateRegistry':
        """
        Build a registry with the storages described by a ``LiveStateConfig``.

        A Redis shared cache is used when ``storage.redis_url`` is set, and a
        ``DatabaseStorage`` when ``storage.database_url`` is set.
        """
        storage_config = config.storage
        if storage_config.redis_url:
            shared = RedisCache.from_url(storage_config.redis_url, default_ttl=storage_config.session_ttl)
            ttl_store = RedisCache.from_url(storage_config.redis_url, prefix="livestate:ttl:", default_ttl=storage_config.session_ttl)
            # Several processes share Redis; a process-local copy would go stale.
            process_cache_size = 0
        else:
            shared = MemoryCache(default_ttl=storage_config.session_ttl)
            ttl_store = MemoryCache(default_ttl=storage_config.session_ttl)
            process_cache_size = storage_config.process_cache_size

        storages: Dict[PersistMode, StateStorage] = {
            PersistMode.SESSION: EphemeralStorage(
                shared=shared,
                ttl_store=ttl_store,
                ttl=storage_config.session_ttl,
                process_cache_size=process_cache_size,
            ),
        }
        if storage_config.database_url:
            storages[PersistMode.DATABASE] = DatabaseStorage.from_url(
                storage_config.database_url, echo=storage_config.database_echo
            )

        for storage in storages.values():
            storage.configure_cleanup(enabled=True, interval=storage_config.cleanup_interval)

        return cls(storages=storages, bus=bus)

    def register(
        self,
        state_type: Type,
        *,
        name: Optional[str] = None,
        schema: Optional[StateSchema] = None,
    ) -> RegistryEntry:
        """
        Register a state type.

        Args:
            state_type: Class decorated with ``@state`` (or described by ``schema``)
            name: Override for the state name
            schema: Pre-built schema, e.g. from ``StateSchema.from_mapping``

        Raises:
            ConfigError: if the type has no descriptor, the name is taken by a
                different type, or no durable backend exists for a
                ``database`` state
        """
        schema = schema or StateSchema.from_class(state_type)
        name = name or schema.descriptor.name or derive_state_name(state_type.__name__)

        existing = self._entries.get(name)
        if existing is not None:
            if existing.state_type is state_type:
                return existing
            raise ConfigError(
                f"State name '{name}' is already registered to {existing.state_type.__name__}"
            )

        persist = schema.descriptor.persist
        if persist == PersistMode.DATABASE:
            storage = self.storages.get(PersistMode.DATABASE)
            if storage is None or not storage.durable:
                raise ConfigError(f"State '{name}' uses database persistence but no durable storage is configured")

        entry = RegistryEntry(name=name, state_type=state_type, schema=schema)
        self._entries[name] = entry
        logger.debug("Registered state '%s' (%s, persist=%s)", name, state_type.__name__, persist.value)
        return entry

    def entry(self, name: str) -> RegistryEntry:
        """
        Raises:
            NotFoundError: if no state is registered under ``name``
        """
        try:
            return self._entries[name]
        except KeyError:
            raise NotFoundError(f"State '{name}' not found") from None

    def has(self, name: str) -> bool:
        return name in self._entries

    @property
    def names(self) -> List[str]:
        return list(self._entries)

    def storage_for(self, persist: PersistMode) -> Optional[StateStorage]:
        """Backend for a persist mode; ``None`` for ``persist=none``."""
        if persist == PersistMode.NONE:
            return None
        return self.storages.get(persist)

    def get_actions_metadata(self) -> Dict[str, Dict[str, Dict[str, Any]]]:
        """``{state: {action: {mode, debounce, confirm}}}`` for every registered state."""
        return {name: entry.schema.actions_metadata() for name, entry in self._entries.items()}

    def context(self, session_id: str, user_id: Optional[str] = None) -> 'StateContext':
        """Create the per-request view of this registry for one session."""
        return StateContext(self, session_id, user_id=user_id)

    def start_cleanup(self) -> None:
        for storage in self.storages.values():
            storage.start_cleanup()

    def stop_cleanup(self) -> None:
        for storage in self.storages.values():
            storage.stop_cleanup()


class StateContext:
    """
    Registry operations for one session, usually one request.

    Loaded data and proxies are cached for the lifetime of the context.
    """

    def __init__(self, registry: StateRegistry, session_id: str, user_id: Optional[str] = None):
        self.registry = registry
        self.session_id = session_id
        self.user_id = user_id
        self._data: Dict[str, Dict[str, Any]] = {}
        self._proxies: Dict[str, StateProxy] = {}

    def get_state(self, name: str) -> StateProxy:
        """
        Load (on first use) and return the proxy for a state.

        Raises:
            NotFoundError: if the state is not registered
        """
        proxy = self._proxies.get(name)
        if proxy is not None:
            return proxy

        entry = self.registry.entry(name)
        data = self._load(entry)
        instance = self._instantiate(entry, data)
        proxy = StateProxy(
            name,
            instance,
            entry.schema,
            saver=self.save_state,
            bus=self.registry.bus,
            session_id=self.session_id,
        )
        self._proxies[name] = proxy
        return proxy

    def save_state(self, name: str, data: Dict[str, Any]) -> None:
        """Write a snapshot through the state's backend (no-op for none/local)."""
        entry = self.registry.entry(name)
        self._data[name] = data
        storage = self.registry.storage_for(entry.schema.descriptor.persist)
        if storage is not None:
            storage.save(self.owner_of(entry), name, data)

    def get_hydration_data(self) -> Dict[str, Dict[str, Any]]:
        """Snapshots of every synced state loaded in this context."""
        return {
            name: proxy.to_dict()
            for name, proxy in self._proxies.items()
            if proxy.schema.descriptor.sync
        }

    def get_actions_metadata(self) -> Dict[str, Dict[str, Dict[str, Any]]]:
        return self.registry.get_actions_metadata()

    def owner_of(self, entry: RegistryEntry) -> str:
        """Storage owner id: shared for global states, else this session."""
        if entry.schema.descriptor.scope == StateScope.GLOBAL:
            return SHARED_SESSION_ID
        return self.session_id

    @property
    def loaded(self) -> List[str]:
        return list(self._proxies)

    def _load(self, entry: RegistryEntry) -> Dict[str, Any]:
        if entry.name in self._data:
            return self._data[entry.name]
        persist = entry.schema.descriptor.persist
        if persist in (PersistMode.NONE, PersistMode.LOCAL):
            data = {}
        else:
            data = self.registry.storage_for(persist).get(self.owner_of(entry), entry.name)
        self._data[entry.name] = data
        return data

    def _instantiate(self, entry: RegistryEntry, data: Dict[str, Any]) -> Any:
        # Unknown keys are ignored, missing keys keep their defaults.
        values = {key: data[key] for key in entry.schema.fields.values() if key in data}
        try:
            return entry.state_type.model_validate(values)
        except ValidationError:
            logger.warning("Stored data for state '%s' is invalid, using defaults", entry.name, exc_info=True)
        try:
            return entry.state_type()
        except ValidationError as e:
            raise ConfigError(f"State '{entry.name}' cannot be created with default values: {e}") from e
