"""Pydantic models for component manifest validation.

This module defines the models used to validate component manifests
loaded from YAML/JSON files. A manifest is an ordered list of
components; the list order is the build order unless dependency
enforcement is turned on.
"""

import re
from posixpath import basename
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from stagebuild.types import BuildStrategy, PatchAction

# Component names end up in file names (markers, logs, staging dirs)
COMPONENT_NAME_PATTERN = re.compile(r"^[a-zA-Z0-9][a-zA-Z0-9_.+\-]*$")


def expand_placeholders(value: str, name: str, version: str) -> str:
    """Expand ``{name}`` and ``{version}`` placeholders in a string."""
    return value.replace("{name}", name).replace("{version}", version)


class SourceSpec(BaseModel):
    """Schema for a component source origin.

    Exactly one of ``tarball`` and ``git`` must be given.

    Attributes:
        tarball: URL of a source archive.
        git: URL of a git repository.
        ref: Branch or tag to check out (git only, default branch if unset).
    """

    model_config = ConfigDict(extra="forbid")

    tarball: str | None = Field(default=None, description="Source archive URL")
    git: str | None = Field(default=None, description="Git repository URL")
    ref: str | None = Field(default=None, description="Git branch or tag")

    @model_validator(mode="after")
    def validate_exactly_one_origin(self) -> "SourceSpec":
        """Validate that exactly one origin kind is declared."""
        if bool(self.tarball) == bool(self.git):
            raise ValueError("source must declare exactly one of 'tarball' or 'git'")
        if self.ref and not self.git:
            raise ValueError("'ref' is only valid for git sources")
        return self

    @property
    def is_git(self) -> bool:
        """True for git checkouts."""
        return self.git is not None

    @property
    def url(self) -> str:
        """The origin URL, whichever kind it is."""
        return self.git or self.tarball or ""

    @property
    def archive_filename(self) -> str:
        """Basename of the tarball URL (empty for git sources)."""
        if not self.tarball:
            return ""
        return basename(urlparse(self.tarball).path)


class PatchSpec(BaseModel):
    """Schema for a text patch applied to the extracted source.

    Attributes:
        file: Path of the file to patch, relative to the source directory.
        search: Exact text to look for.
        replace: Literal replacement (or the line to insert for append-after).
        action: How to edit the file.
    """

    model_config = ConfigDict(extra="forbid")

    file: str = Field(description="File relative to the source directory")
    search: str = Field(min_length=1, description="Exact text to find")
    replace: str = Field(default="", description="Replacement text")
    action: PatchAction = Field(default=PatchAction.REPLACE)

    @field_validator("file")
    @classmethod
    def validate_relative(cls, v: str) -> str:
        """Validate the file path stays inside the source tree."""
        if v.startswith("/") or ".." in v.split("/"):
            raise ValueError("patch file must be a relative path inside the source tree")
        return v


class AssetSpec(BaseModel):
    """Schema for a static file shipped by an assets-only component.

    Attributes:
        url: Where to download the file from.
        destination: Directory relative to the install prefix.
    """

    model_config = ConfigDict(extra="forbid")

    url: str
    destination: str = Field(description="Directory relative to the install prefix")

    @field_validator("destination")
    @classmethod
    def validate_destination(cls, v: str) -> str:
        """Validate destination is a relative path."""
        v = v.strip("/")
        if ".." in v.split("/"):
            raise ValueError("asset destination must not contain '..'")
        return v

    @property
    def filename(self) -> str:
        """Basename of the asset URL."""
        return basename(urlparse(self.url).path)


class ComponentSpec(BaseModel):
    """Schema for one buildable component.

    Attributes:
        name: Unique component name.
        version: Version string.
        source: Source origin (absent only for assets-only components).
        strategy: Build-system driver.
        flags: Extra arguments for the configure/setup step.
        patches: Text patches applied before configuring.
        depends: Package dependencies written to the package descriptor.
        requires: Components that must be complete first (enforced only
            when dependency enforcement is enabled).
        install_to_prefix: Copy the staged tree into the live prefix after
            a successful build so later components can find it.
        environment: Extra environment variables for build steps.
        post_configure: Commands run in the build directory between the
            configure and compile steps.
        path_prepend: Build-directory subdirectories put at the front of
            PATH for every step after configure.
        post_install: Commands run in the live prefix once the stage has
            been merged into it (requires ``install_to_prefix``).
        assets: Files shipped by an assets-only component.
        description: Package description.
    """

    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1, max_length=100)
    version: str = Field(min_length=1)
    source: SourceSpec | None = None
    strategy: BuildStrategy = BuildStrategy.CONFIGURE
    flags: list[str] = Field(default_factory=list)
    patches: list[PatchSpec] = Field(default_factory=list)
    depends: list[str] = Field(default_factory=list)
    requires: list[str] = Field(default_factory=list)
    install_to_prefix: bool = False
    environment: dict[str, str] = Field(default_factory=dict)
    post_configure: list[list[str]] = Field(default_factory=list)
    path_prepend: list[str] = Field(default_factory=list)
    post_install: list[list[str]] = Field(default_factory=list)
    assets: list[AssetSpec] = Field(default_factory=list)
    description: str | None = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Validate the name is usable in file names."""
        if not COMPONENT_NAME_PATTERN.match(v):
            raise ValueError(
                f"component name must match {COMPONENT_NAME_PATTERN.pattern}, got '{v}'"
            )
        return v

    @field_validator("post_configure", "post_install")
    @classmethod
    def validate_commands(cls, v: list[list[str]]) -> list[list[str]]:
        """Validate every extra command names a program."""
        for cmd in v:
            if not cmd or not cmd[0]:
                raise ValueError("extra build commands must not be empty")
        return v

    @field_validator("path_prepend")
    @classmethod
    def validate_path_prepend(cls, v: list[str]) -> list[str]:
        """Validate PATH entries stay inside the build directory."""
        for entry in v:
            if not entry or entry.startswith("/") or ".." in entry.split("/"):
                raise ValueError("path_prepend entries must be relative to the build directory")
        return v

    @model_validator(mode="after")
    def validate_origin_and_expand(self) -> "ComponentSpec":
        """Check the source/strategy combination and expand URL placeholders."""
        if self.strategy == BuildStrategy.ASSETS:
            if self.source is not None:
                raise ValueError(f"{self.name}: assets-only components have no source")
            if not self.assets:
                raise ValueError(f"{self.name}: assets strategy requires 'assets'")
            if self.post_configure or self.path_prepend:
                raise ValueError(
                    f"{self.name}: 'post_configure' and 'path_prepend' need a compiled strategy"
                )
        else:
            if self.source is None:
                raise ValueError(f"{self.name}: a source is required to compile")
            if self.assets:
                raise ValueError(f"{self.name}: 'assets' is only valid with the assets strategy")

        if self.source is not None:
            self.source = SourceSpec(
                tarball=self._expand(self.source.tarball),
                git=self._expand(self.source.git),
                ref=self._expand(self.source.ref),
            )
        for asset in self.assets:
            asset.url = expand_placeholders(asset.url, self.name, self.version)
        if self.name in self.requires:
            raise ValueError(f"{self.name}: a component cannot require itself")
        if self.post_install and not self.install_to_prefix:
            raise ValueError(f"{self.name}: 'post_install' requires 'install_to_prefix'")
        return self

    def _expand(self, value: str | None) -> str | None:
        if value is None:
            return None
        return expand_placeholders(value, self.name, self.version)


class ManifestSchema(BaseModel):
    """Schema for a component manifest.

    Attributes:
        name: Manifest name.
        description: Optional description.
        package_prefix: Prefix prepended to package names in descriptors.
        prerequisites: Host packages installed before building.
        cmake_flags: Flags added to every cmake-based configure step.
        components: Ordered components.
    """

    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1)
    description: str | None = None
    package_prefix: str = ""
    prerequisites: list[str] = Field(default_factory=list)
    cmake_flags: list[str] = Field(default_factory=list)
    components: list[ComponentSpec] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_unique_names(self) -> "ManifestSchema":
        """Validate component names are unique."""
        seen: set[str] = set()
        duplicates: list[str] = []
        for component in self.components:
            if component.name in seen:
                duplicates.append(component.name)
            seen.add(component.name)
        if duplicates:
            raise ValueError(f"duplicate component names: {', '.join(duplicates)}")
        return self


__all__ = [
    "AssetSpec",
    "COMPONENT_NAME_PATTERN",
    "ComponentSpec",
    "ManifestSchema",
    "PatchSpec",
    "SourceSpec",
    "expand_placeholders",
]
