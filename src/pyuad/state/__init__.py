"""State reconciliation layer.

This package owns the application state. Every input (device refreshes,
user actions, command completions, release checks) enters as an event and
is applied by :class:`pyuad.state.loop.ReconciliationLoop`, which is the only
component allowed to mutate that state.
"""
