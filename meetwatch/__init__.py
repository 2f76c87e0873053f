"""Meeting auto-join scheduling and homepage recovery.

`meetwatch.meetings` decides when a meeting should be opened.
`meetwatch.homepage` decides when a stale meeting list should be reloaded.
`meetwatch.session` wires both into one per-tab session object.
"""

__version__ = "0.3.0"
