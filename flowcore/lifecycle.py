"""Component lifecycle registry: bulk cleanup of a component's subscriptions and cache."""

import logging
from collections import defaultdict
from typing import Any, Callable

from flowcore.cache import TTLCache
from flowcore.events import EventBus, Topics

logger = logging.getLogger(__name__)


def shared_state_key(from_screen: str, to_screen: str) -> str:
    return f"shared_state_{from_screen}_to_{to_screen}"


def component_cache_key(component_name: str, key: str) -> str:
    """Cache key owned by component_name, purged when it unmounts."""
    return f"{component_name}_{key}"


class ComponentRegistry:
    """Tracks mounted UI components and cleans up after them on unmount.

    Cache entries belong to a component when their key starts with the
    component name (e.g. ``Home_balance`` for ``Home``).
    Component names must not be prefixes of one another: unmounting ``Home``
    also purges ``HomeSettings_*``.
    """

    def __init__(self, bus: EventBus, cache: TTLCache) -> None:
        self._bus = bus
        self._cache = cache
        self._mounted: dict[str, set[str]] = defaultdict(set)

    def on_mount(self, component_name: str, instance_id: str, **data: Any) -> None:
        self._mounted[component_name].add(instance_id)
        self._bus.emit(
            Topics.COMPONENT_MOUNT,
            {**data, "component_name": component_name, "instance_id": instance_id},
        )

    def on_unmount(self, component_name: str, instance_id: str) -> None:
        """Emit unmount, cancel the component's listeners, purge its cache namespace.

        Cleanup is unconditional: safe to call again, or for a component
        that was never mounted.
        """
        instances = self._mounted.get(component_name)
        if instances is not None:
            instances.discard(instance_id)
            if not instances:
                del self._mounted[component_name]
        self._bus.emit(
            Topics.COMPONENT_UNMOUNT,
            {"component_name": component_name, "instance_id": instance_id},
        )
        listeners = self._bus.remove_owner(component_name)
        entries = self._cache.clear(component_name)
        logger.debug(
            "Unmounted %s/%s: %d listeners, %d cache entries removed",
            component_name,
            instance_id,
            listeners,
            entries,
        )

    def on_focus(self, component_name: str, instance_id: str) -> None:
        self._bus.emit(
            Topics.COMPONENT_FOCUS,
            {"component_name": component_name, "instance_id": instance_id},
        )

    def on_blur(self, component_name: str, instance_id: str) -> None:
        self._bus.emit(
            Topics.COMPONENT_BLUR,
            {"component_name": component_name, "instance_id": instance_id},
        )

    def subscribe(
        self,
        component_name: str,
        event_type: str,
        callback: Callable[[Any], Any],
        **options: Any,
    ) -> Callable[[], None]:
        """Subscribe on behalf of a component; cancelled automatically on unmount."""
        options["owner_component"] = component_name
        return self._bus.subscribe(event_type, callback, **options)

    def register_error_boundary(
        self, component_name: str, handler: Callable[[dict[str, Any]], Any]
    ) -> Callable[[], None]:
        """Route component.error reports for component_name to handler.

        Owned by the component, so unmount cancels it.
        """

        def on_error(payload: dict[str, Any]) -> Any:
            if payload.get("component_name") == component_name:
                return handler(payload)
            return None

        return self.subscribe(component_name, Topics.COMPONENT_ERROR, on_error)

    def report_error(
        self,
        component_name: str,
        error: BaseException,
        context: dict[str, Any] | None = None,
    ) -> None:
        logger.error("Component error in %s: %s", component_name, error)
        self._bus.emit(
            Topics.COMPONENT_ERROR,
            {
                "component_name": component_name,
                "error": str(error),
                "error_type": type(error).__name__,
                "context": context or {},
            },
        )

    def share_state(
        self,
        from_screen: str,
        to_screen: str,
        data: dict[str, Any],
        ttl_ms: int | None = None,
    ) -> None:
        """Hand data from one screen to the next through the cache."""
        self._cache.set(
            shared_state_key(from_screen, to_screen),
            {**data, "from_screen": from_screen, "to_screen": to_screen},
            ttl_ms,
        )
        self._bus.emit(
            Topics.STATE_TRANSITION,
            {"from_screen": from_screen, "to_screen": to_screen, "shared_data": data},
        )

    def get_shared_state(self, from_screen: str, to_screen: str) -> dict[str, Any] | None:
        return self._cache.get(shared_state_key(from_screen, to_screen))

    def mounted_instances(self, component_name: str | None = None) -> dict[str, list[str]]:
        if component_name is not None:
            return {component_name: sorted(self._mounted.get(component_name, ()))}
        return {name: sorted(ids) for name, ids in self._mounted.items()}
