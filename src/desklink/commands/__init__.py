"""Built-in CLI sub-commands for desklink.

* :mod:`~desklink.commands.link` -- ``login``, ``logout``, ``status``,
  ``run``, and ``profile``, registered directly on the root app.
* :mod:`~desklink.commands.config` -- the ``config`` sub-command group.
"""
