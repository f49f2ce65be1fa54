"""Well-known event types. Emitted by the core or by the consuming UI layer."""


class Topics:
    """Event type catalog. Any other string is a valid event type too."""

    WILDCARD = "*"

    # Listener raised; payload {event_type, listener_id, owner_component, error}
    LISTENER_ERROR = "bus.listener_error"

    # Component lifecycle (ComponentRegistry)
    COMPONENT_MOUNT = "component.mount"
    COMPONENT_UNMOUNT = "component.unmount"
    COMPONENT_FOCUS = "component.focus"
    COMPONENT_BLUR = "component.blur"
    COMPONENT_ERROR = "component.error"
    STATE_TRANSITION = "state.transition"

    # Connectivity transitions (ConnectivityMonitor)
    CONNECTIVITY_RESTORED = "connectivity.restored"
    CONNECTIVITY_LOST = "connectivity.lost"

    # Offline sync progress (SyncQueue)
    SYNC_ENQUEUED = "sync.enqueued"
    SYNC_START = "sync.start"
    SYNC_ITEM_COMPLETE = "sync.item_complete"
    SYNC_ITEM_RETRY = "sync.item_retry"
    SYNC_ITEM_DROPPED = "sync.item_dropped"
    SYNC_NO_HANDLER = "sync.no_handler"
    SYNC_COMPLETE = "sync.complete"
    SYNC_CLEARED = "sync.cleared"

    # Pushing fresh server data to screens (IntegrationHub.sync_data)
    DATA_SYNC_START = "data.sync.start"
    DATA_SYNC_COMPLETE = "data.sync.complete"
    DATA_SYNC_ERROR = "data.sync.error"

    # Domain events published by screens
    USER_AUTHENTICATED = "user.authenticated"
    USER_LOGGED_OUT = "user.logged_out"
    PROFILE_UPDATED = "profile.updated"
    TRANSACTION_ADDED = "transaction.added"
    TRANSACTION_UPDATED = "transaction.updated"
    TRANSACTION_DELETED = "transaction.deleted"
    ACCOUNT_UPDATED = "account.updated"
    BALANCE_CHANGED = "balance.changed"
    THEME_CHANGED = "theme.changed"
    NOTIFICATION_RECEIVED = "notification.received"


# Payload contracts (documentation only; validation belongs to domain code)
LISTENER_ERROR_PAYLOAD = {
    "event_type": "str",
    "listener_id": "str",
    "owner_component": "str | None",
    "error": "str",
}
SYNC_ITEM_DROPPED_PAYLOAD = {"id": "str", "operation": "dict", "retry_count": "int", "error": "str"}
SYNC_COMPLETE_PAYLOAD = {"succeeded": "int", "retried": "int", "dropped": "int"}
COMPONENT_LIFECYCLE_PAYLOAD = {"component_name": "str", "instance_id": "str"}
DATA_SYNC_PAYLOAD = {"data_type": "str", "data": "Any"}
DATA_SYNC_ERROR_PAYLOAD = {"data_type": "str", "error": "str"}
