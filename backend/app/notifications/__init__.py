"""
Notifications package — regulated multi-channel delivery.

Modules:
    models         — enums, messages, contacts, units, records
    time_policy    — time-severity policy and shift classification
    windows        — clock and striped locks
    suppression    — duplicate suppression engine
    digest         — digest consolidation engine
    formatters     — per-channel rendering of messages and digests
    channels       — email / SMS / voice / in-app senders with retry
    directory      — contact & group lookup contract
    audit          — audit sink contract
    router         — routing orchestrator (notify)
    sweeper        — periodic digest closure & suppression expiry
    schemas        — pydantic request schema
    inbound_queue  — inbound queue contract
    service        — queue intake and lifecycle
"""
