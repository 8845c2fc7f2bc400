from __future__ import annotations

import importlib
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Mapping, Protocol

from .models import InstallContext, InstallerResult, Integration

logger = logging.getLogger(__name__)

HookFn = Callable[[Integration, InstallContext], Awaitable[dict[str, Any] | None]]

_STAGES = ("pre_install", "apply", "post_install")


class Installer(Protocol):
    """Performs the side effects of installing one integration.

    Retries, if any, are the installer's own concern.
    """

    async def install(self, integration: Integration, context: InstallContext) -> InstallerResult:
        ...


@dataclass(frozen=True)
class IntegrationHooks:
    pre_install: HookFn | None = None
    apply: HookFn | None = None
    post_install: HookFn | None = None


class HookInstaller:
    """Installer that runs per-key pre-install, apply and post-install hooks in order.

    Keys without registered hooks install as a no-op unless *require_hooks*
    is set, in which case they fail. Metadata returned by hooks is merged in
    stage order. Any exception raised by a hook becomes a failed result
    carrying the exception message.
    """

    def __init__(
        self,
        hooks: Mapping[str, IntegrationHooks] | None = None,
        *,
        require_hooks: bool = False,
    ) -> None:
        self._hooks: dict[str, IntegrationHooks] = dict(hooks or {})
        self.require_hooks = require_hooks

    def register(self, key: str, hooks: IntegrationHooks) -> None:
        if key in self._hooks:
            raise ValueError(f"Hooks already registered for integration {key}")
        self._hooks[key] = hooks

    async def install(self, integration: Integration, context: InstallContext) -> InstallerResult:
        hooks = self._hooks.get(integration.key)
        if hooks is None:
            if self.require_hooks:
                return InstallerResult.failed(f"No install hooks registered for integration {integration.key}")
            hooks = IntegrationHooks()
        metadata: dict[str, Any] = {}
        completed: list[str] = []
        for stage in _STAGES:
            hook: HookFn | None = getattr(hooks, stage)
            if hook is None:
                continue
            try:
                produced = await hook(integration, context)
            except Exception as exc:  # noqa: BLE001
                logger.exception("Hook %s failed for %s in version %s", stage, integration.key, context.version_id)
                metadata["stages"] = completed
                metadata["failed_stage"] = stage
                return InstallerResult.failed(str(exc) or type(exc).__name__, metadata=metadata)
            completed.append(stage)
            if produced:
                metadata.update(produced)
        metadata["stages"] = completed
        return InstallerResult.ok(metadata)


def load_hooks(target: str) -> dict[str, IntegrationHooks]:
    """Resolve ``package.module:attribute`` to a key -> hooks mapping.

    The attribute may be the mapping itself or a zero-argument callable
    returning it.

    Raises:
        ValueError: If the target is malformed, cannot be imported, or does
            not resolve to a mapping of ``IntegrationHooks``.
    """
    module_name, sep, attribute = target.partition(":")
    if not sep or not module_name.strip() or not attribute.strip():
        raise ValueError(f"Hooks target must look like 'package.module:attribute', got: {target!r}")
    try:
        module = importlib.import_module(module_name.strip())
    except ImportError as exc:
        raise ValueError(f"Cannot import hooks module {module_name!r}: {exc}") from exc
    try:
        hooks = getattr(module, attribute.strip())
    except AttributeError as exc:
        raise ValueError(f"Hooks module {module_name!r} has no attribute {attribute!r}") from exc

    if callable(hooks) and not isinstance(hooks, Mapping):
        hooks = hooks()
    if not isinstance(hooks, Mapping):
        raise ValueError(f"Hooks target {target!r} must resolve to a mapping, got {type(hooks).__name__}")
    for key, value in hooks.items():
        if not isinstance(value, IntegrationHooks):
            raise ValueError(f"Hooks for integration {key!r} must be IntegrationHooks, got {type(value).__name__}")
    logger.info("Loaded install hooks for %d integration(s) from %s", len(hooks), target)
    return dict(hooks)
