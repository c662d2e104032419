"""Launch command assembly for provisioned instances."""

import os
import re
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import BaseModel

from ..auth.offline import OfflineAuthenticator, UserContext
from ..config import ProvisionConfig
from ..errors import InvalidClasspathEntry, UnknownPlaceholder
from ..utils.host import HostPlatform
from ..versions.download_manager import logging_config_path
from ..versions.models import LibraryEntry, VersionDescriptor
from ..versions.rules import filter_arguments, filter_libraries
from .instance import Instance

PLACEHOLDER = re.compile(r"\$\{([^}]*)\}")


class LaunchSpec(BaseModel):
    """Everything a process-spawn facility needs to start the game."""
    executable: Path
    args: List[str]
    working_directory: Path

    @property
    def command(self) -> List[str]:
        return [str(self.executable)] + self.args


def substitute(token: str, context: Dict[str, str]) -> str:
    """Replace every ${name} in a token, failing on names missing from the context."""
    def replace(match: re.Match) -> str:
        name = match.group(1)
        if name not in context:
            raise UnknownPlaceholder(name, token)
        return context[name]
    return PLACEHOLDER.sub(replace, token)


class GameLauncher:
    def __init__(self, config: ProvisionConfig, host: Optional[HostPlatform] = None,
                 separator: str = os.pathsep):
        self.config = config
        self.host = host or HostPlatform.current()
        self.separator = separator

    def get_library_path(self, library: LibraryEntry, instance: Instance) -> Optional[Path]:
        """Resolve library JAR path, preferring the instance-local copy."""
        if not library.has_artifact:
            return None
        local = instance.libraries_dir / library.path
        if local.is_file():
            return local
        return self.config.libraries_dir / library.path

    def client_jar_path(self, instance: Instance) -> Path:
        return self.config.versions_dir / instance.version_id / f"{instance.version_id}.jar"

    def assemble_classpath(self, instance: Instance, descriptor: VersionDescriptor) -> str:
        """Assemble Java classpath: host libraries in descriptor order, then the client jar."""
        paths = []
        for lib in filter_libraries(descriptor.libraries, self.host):
            lib_path = self.get_library_path(lib, instance)
            if lib_path is not None:
                paths.append(lib_path)
        paths.append(self.client_jar_path(instance))

        for path in paths:
            if self.separator in str(path):
                raise InvalidClasspathEntry(path, self.separator)

        # Join with platform separator
        return self.separator.join(str(path) for path in paths)

    def game_assets_dir(self, instance: Instance, descriptor: VersionDescriptor) -> Path:
        virtual_dir = self.config.assets_dir / "virtual" / descriptor.asset_index.id
        if virtual_dir.is_dir():
            return virtual_dir
        resources_dir = instance.game_dir / "resources"
        if resources_dir.is_dir():
            return resources_dir
        return self.config.assets_dir

    def build_context(self, instance: Instance, descriptor: VersionDescriptor, classpath: str,
                      user: UserContext) -> Dict[str, str]:
        """Placeholder values for argument substitution."""
        return {
            "auth_player_name": user.username,
            "auth_uuid": user.uuid,
            "auth_access_token": user.access_token,
            "auth_session": f"token:{user.access_token}:{user.uuid}",
            "auth_xuid": user.xuid,
            "clientid": user.client_id,
            "user_type": user.user_type,
            "user_properties": "{}",
            "version_name": descriptor.id,
            "version_type": descriptor.type,
            "game_directory": str(instance.game_dir),
            "assets_root": str(self.config.assets_dir),
            "game_assets": str(self.game_assets_dir(instance, descriptor)),
            "assets_index_name": descriptor.asset_index.id,
            "natives_directory": str(instance.natives_dir),
            "library_directory": str(instance.libraries_dir),
            "classpath": classpath,
            "classpath_separator": self.separator,
            "launcher_name": self.config.launcher_name,
            "launcher_version": self.config.launcher_version,
        }

    def build_jvm_args(self, instance: Instance, descriptor: VersionDescriptor, context: Dict[str, str],
                       features: Dict[str, bool]) -> List[str]:
        """Build JVM arguments."""
        args = [f"-Xmx{instance.config.ram_mb}M"]
        for token in filter_arguments(descriptor.jvm_arguments, self.host, features):
            args.append(substitute(token, context))

        log_file = logging_config_path(self.config, descriptor)
        if log_file is not None and log_file.is_file():
            args.append(substitute(descriptor.logging.argument, {"path": str(log_file)}))

        args.extend(substitute(arg, context) for arg in instance.config.java_args)
        return args

    def build_game_args(self, instance: Instance, descriptor: VersionDescriptor, context: Dict[str, str],
                        features: Dict[str, bool]) -> List[str]:
        """Build game arguments."""
        args = [substitute(token, context)
                for token in filter_arguments(descriptor.game_arguments, self.host, features)]
        args.extend(substitute(arg, context) for arg in instance.config.game_args)
        return args

    def build_launch_command(self, instance: Instance, descriptor: VersionDescriptor, runtime_path: Path,
                             user_context: Optional[UserContext] = None,
                             features: Optional[Dict[str, bool]] = None) -> LaunchSpec:
        """Prepare launch command."""
        user = user_context or OfflineAuthenticator.default()
        features = features or {}
        classpath = self.assemble_classpath(instance, descriptor)
        context = self.build_context(instance, descriptor, classpath, user)

        args = self.build_jvm_args(instance, descriptor, context, features)
        args.append(descriptor.main_class)
        args.extend(self.build_game_args(instance, descriptor, context, features))

        return LaunchSpec(executable=runtime_path, args=args, working_directory=instance.game_dir)
