"""Built-in CLI sub-commands for xurl.

* :mod:`~xurl.commands.auth` -- register, inspect, clear and resolve
  credentials (``xurl auth ...``).

Each module exports a :class:`typer.Typer` sub-application that
:func:`~xurl.app.main` mounts on the root app.
"""
