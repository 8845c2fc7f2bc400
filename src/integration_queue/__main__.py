"""Entry point for `python -m integration_queue` and the `integration-queue` CLI script."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
from pathlib import Path

from integration_queue.catalog import IntegrationCatalog, default_catalog, load_catalog
from integration_queue.errors import CatalogError, RecordNotFound, VersionLocked
from integration_queue.installer import HookInstaller, load_hooks
from integration_queue.intake import configure_integration, enqueue_integrations, requeue_failed
from integration_queue.notifications import CompositeNotifier, JsonlEventNotifier, LoggingNotifier, StatusNotifier
from integration_queue.orchestrator import InstallationOrchestrator
from integration_queue.settings import LOG_LEVELS, RuntimeSettings
from integration_queue.state_store import FileInstallationStore


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Resolve and install integrations for a project version")
    parser.add_argument("--state-store", type=Path, default=None, help="Override INTEGRATIONS_STATE_STORE_ROOT")
    parser.add_argument("--catalog", type=Path, default=None, help="Override INTEGRATIONS_CATALOG_PATH")
    parser.add_argument("--log-level", default=None, choices=list(LOG_LEVELS), help="Logging verbosity")
    subparsers = parser.add_subparsers(dest="command", required=True)

    order = subparsers.add_parser("order", help="Print the installation order of categories")
    order.add_argument("categories", nargs="*", help="Categories to order (default: all)")

    create = subparsers.add_parser("create-version", help="Register a project version")
    create.add_argument("version_id")
    create.add_argument("--project", required=True, help="Owning project id")
    create.add_argument("--parent", default=None, help="Parent version id")

    enqueue = subparsers.add_parser("enqueue", help="Request integrations for a version")
    enqueue.add_argument("version_id")
    enqueue.add_argument("keys", nargs="+")
    enqueue.add_argument("--var", action="append", default=[], help="Configured variable name (repeatable)")
    enqueue.add_argument("--options-json", default=None, help='Per-key options, e.g. \'{"orpc": {"openapi": false}}\'')

    configure = subparsers.add_parser("configure", help="Supply variables for an integration awaiting config")
    configure.add_argument("version_id")
    configure.add_argument("key")
    configure.add_argument("--var", action="append", default=[], required=True)

    retry = subparsers.add_parser("retry", help="Requeue a failed integration")
    retry.add_argument("version_id")
    retry.add_argument("key")

    run = subparsers.add_parser("run", help="Run the installation queue for a version")
    run.add_argument("version_id")
    run.add_argument("--hooks", default=None, help="Install hooks as package.module:attribute (overrides INTEGRATIONS_HOOKS)")

    status = subparsers.add_parser("status", help="Print a version's installation records")
    status.add_argument("version_id")
    return parser.parse_args(argv)


def build_catalog(settings: RuntimeSettings, override: Path | None) -> IntegrationCatalog:
    path = override if override is not None else settings.catalog_file(Path.cwd())
    return load_catalog(path) if path is not None else default_catalog()


def build_notifier(settings: RuntimeSettings) -> StatusNotifier:
    events_log = settings.events_log_file(Path.cwd())
    if events_log is None:
        return LoggingNotifier()
    return CompositeNotifier(LoggingNotifier(), JsonlEventNotifier(events_log))


def _print_json(payload: object) -> None:
    print(json.dumps(payload, indent=2, sort_keys=True, default=str))


def _run_command(args: argparse.Namespace, settings: RuntimeSettings) -> int:
    catalog = build_catalog(settings, args.catalog)

    if args.command == "order":
        categories = args.categories or sorted(catalog.graph.keys)
        for category in catalog.graph.installation_order(categories):
            print(category)
        return 0

    root = args.state_store if args.state_store is not None else settings.state_store_path(Path.cwd())
    store = FileInstallationStore(root)

    if args.command == "create-version":
        state = store.create_version(args.version_id, args.project, parent_version_id=args.parent)
        _print_json(state.model_dump(mode="json"))
        return 0

    if args.command == "enqueue":
        options = json.loads(args.options_json) if args.options_json else None
        report = enqueue_integrations(
            store,
            catalog,
            version_id=args.version_id,
            keys=args.keys,
            variables=args.var,
            options=options,
        )
        _print_json(report.model_dump(mode="json"))
        return 0

    if args.command == "configure":
        record = configure_integration(store, catalog, version_id=args.version_id, key=args.key, variables=args.var)
        _print_json(record.model_dump(mode="json"))
        return 0

    if args.command == "retry":
        record = requeue_failed(store, version_id=args.version_id, key=args.key)
        _print_json(record.model_dump(mode="json"))
        return 0

    if args.command == "status":
        _print_json([record.model_dump(mode="json") for record in store.list_records(args.version_id)])
        return 0

    hooks_target = args.hooks or settings.hooks
    if not hooks_target:
        logging.error("No install hooks configured; pass --hooks package.module:attribute or set INTEGRATIONS_HOOKS")
        return 1
    installer = HookInstaller(load_hooks(hooks_target), require_hooks=True)

    orchestrator = InstallationOrchestrator(
        catalog,
        store,
        installer,
        notifier=build_notifier(settings),
        settings=settings,
    )
    with store.version_lock(args.version_id):
        result = asyncio.run(orchestrator.run_installation_queue(args.version_id))
    _print_json(result.model_dump(mode="json"))
    if result.status == "error":
        logging.error(
            "integration %s failed to install: %s; integrations installed before it remain active",
            result.failed_key,
            result.message,
        )
        return 1
    return 0


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    try:
        settings = RuntimeSettings.from_env()
    except ValueError as exc:
        logging.basicConfig(level=logging.ERROR)
        logging.error("Invalid configuration: %s", exc)
        return 1

    logging.basicConfig(
        level=getattr(logging, args.log_level or settings.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        return _run_command(args, settings)
    except (CatalogError, RecordNotFound, VersionLocked) as exc:
        logging.error("%s", exc)
        return 1
    except (OSError, ValueError) as exc:
        logging.error("Unable to complete %s: %s", args.command, exc)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
