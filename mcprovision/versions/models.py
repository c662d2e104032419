"""Data models for Minecraft versions."""

from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field, ValidationError

from ..errors import MalformedDescriptor

DEFAULT_MAVEN = "https://libraries.minecraft.net/"
DEFAULT_JAVA_MAJOR = 8

# Launcher defaults for descriptors predating arguments.jvm
LEGACY_JVM_ARGUMENTS = [
    "-Djava.library.path=${natives_directory}",
    "-cp",
    "${classpath}",
]


# Catalog

class VersionInfo(BaseModel):
    id: str
    type: str
    url: str
    time: Optional[datetime] = None
    releaseTime: datetime
    sha1: Optional[str] = None
    complianceLevel: int = 0


class VersionManifest(BaseModel):
    latest: Dict[str, str] = Field(default_factory=dict)
    versions: List[VersionInfo]
    # Set when the network fetch failed and the cached snapshot was used.
    stale: bool = False

    def get(self, version_id: str) -> Optional[VersionInfo]:
        for version in self.versions:
            if version.id == version_id:
                return version
        return None

    def dedupe(self) -> List[str]:
        """Drop repeated ids keeping the first entry, returning the dropped ids."""
        seen = set()
        kept, dropped = [], []
        for version in self.versions:
            if version.id in seen:
                dropped.append(version.id)
                continue
            seen.add(version.id)
            kept.append(version)
        self.versions = kept
        return dropped


# Rules

class VersionRuleOs(BaseModel):
    name: Optional[str] = None
    version: Optional[str] = None
    arch: Optional[str] = None


class VersionRule(BaseModel):
    action: str
    os: Optional[VersionRuleOs] = None
    features: Optional[Dict[str, bool]] = None


# Descriptor

class Artifact(BaseModel):
    url: Optional[str] = None
    sha1: Optional[str] = None
    size: Optional[int] = None
    path: Optional[str] = None
    id: Optional[str] = None


class AssetIndexRef(BaseModel):
    id: str
    url: str
    sha1: Optional[str] = None
    size: Optional[int] = None
    totalSize: Optional[int] = None


class LoggingConfig(BaseModel):
    argument: str
    file: Artifact
    type: Optional[str] = None


class LibraryEntry(BaseModel):
    """One library of a descriptor, before host filtering."""
    name: str
    path: Optional[str] = None
    url: Optional[str] = None
    sha1: Optional[str] = None
    size: Optional[int] = None
    rules: List[VersionRule] = Field(default_factory=list)
    natives: Dict[str, str] = Field(default_factory=dict)
    classifiers: Dict[str, Artifact] = Field(default_factory=dict)
    extract_exclude: List[str] = Field(default_factory=list)

    @property
    def has_artifact(self) -> bool:
        return self.path is not None

    @property
    def group_artifact(self) -> str:
        return group_artifact(self.name)

    def native_classifier(self, os_name: str, pointer_bits: str) -> Optional[str]:
        classifier = self.natives.get(os_name)
        if classifier is None:
            return None
        return classifier.replace("${arch}", pointer_bits)

    def native_artifact(self, os_name: str, pointer_bits: str) -> Optional[Artifact]:
        classifier = self.native_classifier(os_name, pointer_bits)
        if classifier is None:
            return None
        artifact = self.classifiers.get(classifier)
        if artifact is not None and artifact.path is None:
            artifact = artifact.model_copy(update={"path": maven_path(f"{self.name}:{classifier}")})
        return artifact


class ArgumentToken(BaseModel):
    """A launch argument, literal text with optional ${placeholders}, guarded by rules."""
    value: str
    rules: List[VersionRule] = Field(default_factory=list)


class VersionDescriptor(BaseModel):
    id: str
    type: str = "release"
    main_class: str
    libraries: List[LibraryEntry]
    asset_index: AssetIndexRef
    java_major_version: int = DEFAULT_JAVA_MAJOR
    game_arguments: List[ArgumentToken]
    jvm_arguments: List[ArgumentToken]
    downloads: Dict[str, Artifact]
    logging: Optional[LoggingConfig] = None
    inherits_from: Optional[str] = None

    @property
    def client(self) -> Artifact:
        return self.downloads["client"]


class AssetObject(BaseModel):
    hash: str
    size: int

    @property
    def storage_path(self) -> str:
        return f"{self.hash[:2]}/{self.hash}"


class AssetIndex(BaseModel):
    objects: Dict[str, AssetObject] = Field(default_factory=dict)
    virtual: bool = False
    map_to_resources: bool = False


# Parsing

def group_artifact(name: str) -> str:
    """Coordinate without its version, used to detect overridden libraries."""
    parts = name.split("@")[0].split(":")
    return ":".join(parts[:2] + parts[3:])


def maven_path(name: str) -> str:
    """Relative repository path of a maven coordinate group:artifact:version[:classifier][@ext]."""
    name, _, extension = name.partition("@")
    parts = name.split(":")
    if len(parts) < 3:
        raise ValueError(f"invalid maven coordinate {name!r}")
    group, artifact, version = parts[:3]
    classifier = f"-{parts[3]}" if len(parts) > 3 else ""
    return f"{group.replace('.', '/')}/{artifact}/{version}/{artifact}-{version}{classifier}.{extension or 'jar'}"


def parse_library(raw: Dict[str, Any], default_maven: str = DEFAULT_MAVEN) -> LibraryEntry:
    name = raw["name"]
    downloads = raw.get("downloads") or {}
    artifact = downloads.get("artifact")
    entry = {
        "name": name,
        "rules": raw.get("rules") or [],
        "natives": raw.get("natives") or {},
        "classifiers": downloads.get("classifiers") or {},
        "extract_exclude": (raw.get("extract") or {}).get("exclude") or [],
    }
    if artifact:
        entry.update(
            path=artifact.get("path") or maven_path(name),
            url=artifact.get("url") or None,
            sha1=artifact.get("sha1"),
            size=artifact.get("size"),
        )
    elif not entry["natives"]:
        # Maven form, as emitted by loader installers.
        path = maven_path(name)
        base = raw.get("url") or default_maven
        entry.update(path=path, url=base.rstrip("/") + "/" + path, sha1=raw.get("sha1"), size=raw.get("size"))
    return LibraryEntry(**entry)


def parse_arguments(raw: List[Union[str, Dict[str, Any]]]) -> List[ArgumentToken]:
    tokens = []
    for item in raw:
        if isinstance(item, str):
            tokens.append(ArgumentToken(value=item))
            continue
        values = item["value"]
        if isinstance(values, str):
            values = [values]
        rules = item.get("rules") or []
        tokens.extend(ArgumentToken(value=value, rules=rules) for value in values)
    return tokens


def parse_descriptor(data: Dict[str, Any], default_maven: str = DEFAULT_MAVEN) -> VersionDescriptor:
    """Normalize a raw version JSON document, raising MalformedDescriptor on missing fields."""
    version_id = data.get("id", "<unknown>") if isinstance(data, dict) else "<unknown>"
    if not isinstance(data, dict):
        raise MalformedDescriptor(version_id, "document is not a JSON object")
    for field in ("id", "mainClass", "libraries", "assetIndex"):
        if field not in data:
            raise MalformedDescriptor(version_id, f"missing required field {field!r}")
    if "client" not in (data.get("downloads") or {}):
        raise MalformedDescriptor(version_id, "missing required field 'downloads.client'")

    try:
        arguments = data.get("arguments")
        if arguments:
            game_arguments = parse_arguments(arguments.get("game") or [])
            jvm_arguments = parse_arguments(arguments.get("jvm") or LEGACY_JVM_ARGUMENTS)
        else:
            game_arguments = parse_arguments((data.get("minecraftArguments") or "").split())
            jvm_arguments = parse_arguments(LEGACY_JVM_ARGUMENTS)

        logging_config = (data.get("logging") or {}).get("client")

        return VersionDescriptor(
            id=data["id"],
            type=data.get("type") or "release",
            main_class=data["mainClass"],
            libraries=[parse_library(library, default_maven) for library in data["libraries"]],
            asset_index=data["assetIndex"],
            java_major_version=(data.get("javaVersion") or {}).get("majorVersion", DEFAULT_JAVA_MAJOR),
            game_arguments=game_arguments,
            jvm_arguments=jvm_arguments,
            downloads=data["downloads"],
            logging=logging_config,
            inherits_from=data.get("inheritsFrom"),
        )
    except (KeyError, TypeError, ValueError, ValidationError) as e:
        raise MalformedDescriptor(version_id, f"{type(e).__name__}: {e}") from e


def parse_asset_index(data: Dict[str, Any]) -> AssetIndex:
    return AssetIndex(**data)
