# plugins.py
# SPDX-License-Identifier: MIT
"""Plugin discovery for third-party stages, extractors, and stores."""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from importlib import metadata
from typing import cast

from .log import get_logger
from .registries import RegistryBundle

log = get_logger(__name__)

PLUGIN_GROUP = "exifpipe.plugins"

PluginRegistrar = Callable[..., None]


def _select(group: str) -> Sequence[metadata.EntryPoint]:
    entry_points = metadata.entry_points()
    if hasattr(entry_points, "select"):
        return cast(Sequence[metadata.EntryPoint], entry_points.select(group=group))
    grouped = cast(Mapping[str, Sequence[metadata.EntryPoint]], entry_points)
    return grouped.get(group, ())


def load_entrypoint_plugins(bundle: RegistryBundle, *, group: str = PLUGIN_GROUP) -> list[str]:
    """Discover and run plugin registrars.

    A plugin exposes a callable accepting keyword arguments ``stages``,
    ``extractors`` and ``stores``. Import or registration failures are logged
    and skipped so one broken plugin does not disable the CLI.

    Args:
        bundle (RegistryBundle): Registries the plugins register into.
        group (str): Entry-point group name to search.

    Returns:
        list[str]: Names of plugins that registered successfully.
    """
    try:
        eps = _select(group)
    except Exception as exc:  # pragma: no cover - importlib.metadata safety
        log.debug("Plugin discovery skipped: %s", exc)
        return []

    loaded: list[str] = []
    for ep in eps:
        try:
            func: PluginRegistrar = ep.load()
        except Exception as exc:  # noqa: BLE001
            log.warning("Failed to import plugin %s: %s", ep.name, exc)
            continue
        try:
            func(stages=bundle.stages, extractors=bundle.extractors, stores=bundle.stores)
        except Exception as exc:  # noqa: BLE001
            log.warning("Plugin %s failed during registration: %s", ep.name, exc)
            continue
        log.debug("Loaded plugin %s", ep.name)
        loaded.append(ep.name)
    return loaded


__all__ = ["PLUGIN_GROUP", "load_entrypoint_plugins"]
