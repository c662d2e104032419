#!/usr/bin/env python3
"""Headless provisioning entry point"""

import argparse
import asyncio
import logging
import shlex
import sys
from pathlib import Path

from mcprovision.auth import OfflineAuthenticator
from mcprovision.config import ProvisionConfig
from mcprovision.core.instance import InstanceConfig, LoaderKind
from mcprovision.core.provisioner import Provisioner
from mcprovision.errors import ProvisionError
from mcprovision.progress import ProgressEvent
from mcprovision.utils import setup_logging

logger = logging.getLogger("mcprovision")


def print_progress(event: ProgressEvent):
    if event.is_terminal:
        print(f"[{event.stage}] {event.status.value} {event.label}".rstrip(), file=sys.stderr)
    elif event.total:
        print(f"[{event.stage}] {event.completed}/{event.total} {event.label}".rstrip(), file=sys.stderr)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="mcprovision", description="Provision Minecraft Java instances")
    parser.add_argument("-v", "--verbose", action="store_true", help="log debug output to the console")
    commands = parser.add_subparsers(dest="command", required=True)

    create = commands.add_parser("create", help="create an instance for a game version")
    create.add_argument("name")
    create.add_argument("version")
    create.add_argument("--ram", type=int, default=2048, help="maximum heap in MiB")
    create.add_argument("--java", type=Path, help="java executable to use instead of a managed runtime")

    provision = commands.add_parser("provision", help="download everything an instance needs")
    provision.add_argument("name")

    loader = commands.add_parser("loader", help="install or remove a mod loader")
    loader.add_argument("action", choices=["install", "uninstall", "versions"])
    loader.add_argument("name", help="instance name, or game version for 'versions'")
    loader.add_argument("kind", nargs="?", default=None)
    loader.add_argument("--version", dest="loader_version")
    loader.add_argument("--installer", type=Path, help="local installer jar")

    launch = commands.add_parser("launch", help="print the launch command of an instance")
    launch.add_argument("name")
    launch.add_argument("--username", default=None)

    commands.add_parser("list", help="list instances")

    delete = commands.add_parser("delete", help="delete an instance")
    delete.add_argument("name")
    return parser


async def run(args: argparse.Namespace) -> int:
    async with Provisioner(ProvisionConfig.from_env()) as provisioner:
        if args.command == "create":
            config = InstanceConfig(ram_mb=args.ram, java_override=args.java)
            instance = await provisioner.create_instance(args.name, args.version, config, print_progress)
            result = await provisioner.provision(instance, print_progress)
            if result.manifest_stale:
                logger.warning("Version manifest could not be refreshed, used the cached copy")
            print(instance.root)

        elif args.command == "provision":
            instance = await provisioner.load_instance(args.name)
            await provisioner.provision(instance, print_progress)

        elif args.command == "loader":
            if args.action != "uninstall" and args.kind is None:
                raise ValueError(f"loader {args.action} needs a loader kind")
            if args.action == "versions":
                for version in await provisioner.loaders.list_loader_versions(LoaderKind.parse(args.kind), args.name):
                    print(version)
                return 0
            instance = await provisioner.load_instance(args.name)
            if args.action == "install":
                instance = await provisioner.install_loader(instance, LoaderKind.parse(args.kind),
                                                            args.loader_version, print_progress, args.installer)
            else:
                instance = await provisioner.uninstall_loader(instance)
            print(instance.loader_state)

        elif args.command == "launch":
            instance = await provisioner.load_instance(args.name)
            user = None
            if args.username:
                user = await OfflineAuthenticator.authenticate(args.username)
            spec = await provisioner.launch_spec(instance, user, print_progress)
            print(f"cd {shlex.quote(str(spec.working_directory))}")
            print(shlex.join(spec.command))

        elif args.command == "list":
            for name in provisioner.list_instances():
                print(name)

        elif args.command == "delete":
            await provisioner.delete_instance(args.name)
    return 0


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(level=logging.DEBUG if args.verbose else logging.INFO)
    try:
        return asyncio.run(run(args))
    except (ProvisionError, ValueError) as e:
        logger.error("%s", e)
        return 1
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
