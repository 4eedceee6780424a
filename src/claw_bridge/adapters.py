from __future__ import annotations

import importlib
import importlib.metadata
import logging

from .protocols import AdapterFactory

logger = logging.getLogger("claw_bridge.adapters")

ENTRY_POINT_GROUP = "claw_bridge.adapters"


def available_adapters() -> list[str]:
    return sorted(ep.name for ep in importlib.metadata.entry_points(group=ENTRY_POINT_GROUP))


def resolve_adapter_factory(spec: str) -> AdapterFactory:
    """Resolve an adapter factory by entry-point name or ``module:attribute``.

    Installed adapter packages register under the ``claw_bridge.adapters``
    entry-point group; a dotted path is accepted for local adapters.
    """
    spec = (spec or "").strip()
    if not spec:
        known = available_adapters()
        if len(known) == 1:
            spec = known[0]
            logger.info("Using the only installed adapter: %s", spec)
        else:
            raise ValueError(
                "No adapter configured. Set claw_bridge_adapter to one of "
                f"{', '.join(known) or '(none installed)'} or to module:attribute."
            )

    if ":" in spec:
        module_name, _, attr = spec.partition(":")
        module = importlib.import_module(module_name)
        try:
            factory = getattr(module, attr)
        except AttributeError as exc:
            raise ValueError(f"Adapter factory {attr!r} not found in {module_name}") from exc
    else:
        matches = [ep for ep in importlib.metadata.entry_points(group=ENTRY_POINT_GROUP) if ep.name == spec]
        if not matches:
            raise ValueError(
                f"Unknown adapter: {spec!r}. Installed: {', '.join(available_adapters()) or '(none)'}"
            )
        factory = matches[0].load()

    if not callable(factory):
        raise ValueError(f"Adapter factory {spec!r} is not callable")
    return factory
