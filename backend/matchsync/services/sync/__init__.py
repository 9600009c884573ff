"""Display sync services: snapshots, timers, transports and the coordinator.

Everything in here is scoped to one court. The coordinator is the only writer
of match state; transports only ever carry full snapshots out and snapshot
requests back in.
"""
