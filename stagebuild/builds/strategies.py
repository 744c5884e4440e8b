"""Build-strategy adapters.

Each adapter drives one external build system through the same three
steps: configure, compile, install-to-stage. A component may add its
own commands between configure and compile. The first step that exits
non-zero aborts the component; nothing is retried. On success the
stage directory holds the component's files rooted like the live
prefix (DESTDIR-style), ready to be packaged or merged.
"""

from __future__ import annotations

import logging
import os
import shutil
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, ClassVar

from stagebuild.builds.runner import ComponentLog, StepResult, run_step
from stagebuild.types import BuildStrategy

if TYPE_CHECKING:
    from stagebuild.builds.context import BuildContext
    from stagebuild.components.schema import ComponentSpec

logger = logging.getLogger(__name__)


@dataclass
class StepCommand:
    """A command for one build step.

    Attributes:
        step: Step name.
        cmd: Command as a list of strings.
        cwd: Working directory.
        env: Extra environment variables for this step only.
    """

    step: str
    cmd: list[str]
    cwd: Path
    env: dict[str, str] = field(default_factory=dict)


def cmake_standard_flags(ctx: BuildContext) -> list[str]:
    """Compose the toolchain flags every cmake configure receives."""
    return [
        f"-DCMAKE_INSTALL_PREFIX={ctx.prefix}",
        "-DCMAKE_BUILD_TYPE=Release",
        "-DCMAKE_SYSTEM_NAME=Linux",
        f"-DCMAKE_C_FLAGS={ctx.cflags}",
        f"-DCMAKE_CXX_FLAGS={ctx.cxxflags}",
        f"-DCMAKE_EXE_LINKER_FLAGS={ctx.ldflags}",
        f"-DCMAKE_SHARED_LINKER_FLAGS={ctx.ldflags}",
        "-DBUILD_TESTING=OFF",
        *ctx.cmake_flags,
    ]


class BuildStrategyAdapter(ABC):
    """Base class for build-system adapters."""

    strategy: ClassVar[BuildStrategy]
    build_dirname: ClassVar[str] = "build"

    def build_dir(self, source_dir: Path) -> Path:
        """Out-of-tree build directory inside the source tree."""
        return source_dir / self.build_dirname

    def prepare(self, source_dir: Path) -> Path:
        """Create a fresh build directory."""
        build_dir = self.build_dir(source_dir)
        if build_dir.exists():
            shutil.rmtree(build_dir)
        build_dir.mkdir(parents=True)
        return build_dir

    @abstractmethod
    def configure(
        self, component: ComponentSpec, source_dir: Path, ctx: BuildContext
    ) -> StepCommand:
        """Compose the configure step."""

    @abstractmethod
    def compile(
        self, component: ComponentSpec, source_dir: Path, ctx: BuildContext
    ) -> StepCommand:
        """Compose the compile step."""

    @abstractmethod
    def install(
        self,
        component: ComponentSpec,
        source_dir: Path,
        stage_dir: Path,
        ctx: BuildContext,
    ) -> StepCommand:
        """Compose the install-to-stage step."""

    def steps(
        self,
        component: ComponentSpec,
        source_dir: Path,
        stage_dir: Path,
        ctx: BuildContext,
    ) -> list[StepCommand]:
        """All steps in execution order."""
        return [
            self.configure(component, source_dir, ctx),
            *self.post_configure(component, source_dir),
            self.compile(component, source_dir, ctx),
            self.install(component, source_dir, stage_dir, ctx),
        ]

    def post_configure(self, component: ComponentSpec, source_dir: Path) -> list[StepCommand]:
        """The component's extra commands, run in the build directory."""
        build_dir = self.build_dir(source_dir)
        return [
            StepCommand(f"post-configure-{index}", list(cmd), build_dir)
            for index, cmd in enumerate(component.post_configure, start=1)
        ]

    def search_path(
        self, component: ComponentSpec, source_dir: Path, env: dict[str, str]
    ) -> str | None:
        """PATH for steps after configure, or None when unchanged."""
        if not component.path_prepend:
            return None
        build_dir = self.build_dir(source_dir)
        entries = [str(build_dir / entry) for entry in component.path_prepend]
        if env.get("PATH"):
            entries.append(env["PATH"])
        return os.pathsep.join(entries)

    def run(
        self,
        component: ComponentSpec,
        source_dir: Path,
        stage_dir: Path,
        ctx: BuildContext,
        log: ComponentLog,
    ) -> list[StepResult]:
        """Configure, compile and install a component into its stage.

        Args:
            component: Component being built.
            source_dir: Extracted source tree.
            stage_dir: Empty stage directory.
            ctx: Build context.
            log: Open component log.

        Returns:
            Results of the executed steps.

        Raises:
            BuildStepError: On the first failing step.
        """
        logger.info("Building %s with %s", component.name, self.strategy.value)
        self.prepare(source_dir)
        base_env = ctx.step_env(component.environment)
        search_path = self.search_path(component, source_dir, base_env)

        results: list[StepResult] = []
        for command in self.steps(component, source_dir, stage_dir, ctx):
            env = {**base_env, **command.env} if command.env else base_env
            if search_path and command.step != "configure":
                env = {**env, "PATH": search_path}
            results.append(run_step(command.step, command.cmd, command.cwd, log, env=env))
        return results


class ConfigureStrategy(BuildStrategyAdapter):
    """cmake-generated Makefiles, ``make``, ``make install DESTDIR=``."""

    strategy = BuildStrategy.CONFIGURE

    def configure(
        self, component: ComponentSpec, source_dir: Path, ctx: BuildContext
    ) -> StepCommand:
        cmd = [
            "cmake",
            "-S",
            str(source_dir),
            "-B",
            str(self.build_dir(source_dir)),
            *cmake_standard_flags(ctx),
            *component.flags,
        ]
        return StepCommand("configure", cmd, source_dir)

    def compile(
        self, component: ComponentSpec, source_dir: Path, ctx: BuildContext
    ) -> StepCommand:
        return StepCommand("compile", ["make", f"-j{ctx.jobs}"], self.build_dir(source_dir))

    def install(
        self,
        component: ComponentSpec,
        source_dir: Path,
        stage_dir: Path,
        ctx: BuildContext,
    ) -> StepCommand:
        return StepCommand(
            "install",
            ["make", "install", f"DESTDIR={stage_dir}"],
            self.build_dir(source_dir),
        )


class NinjaStrategy(BuildStrategyAdapter):
    """cmake-generated Ninja files, ``ninja``, ``DESTDIR= ninja install``."""

    strategy = BuildStrategy.NINJA

    def configure(
        self, component: ComponentSpec, source_dir: Path, ctx: BuildContext
    ) -> StepCommand:
        cmd = [
            "cmake",
            "-S",
            str(source_dir),
            "-B",
            str(self.build_dir(source_dir)),
            "-G",
            "Ninja",
            *cmake_standard_flags(ctx),
            *component.flags,
        ]
        return StepCommand("configure", cmd, source_dir)

    def compile(
        self, component: ComponentSpec, source_dir: Path, ctx: BuildContext
    ) -> StepCommand:
        return StepCommand(
            "compile",
            ["ninja", "-C", str(self.build_dir(source_dir)), f"-j{ctx.jobs}"],
            source_dir,
        )

    def install(
        self,
        component: ComponentSpec,
        source_dir: Path,
        stage_dir: Path,
        ctx: BuildContext,
    ) -> StepCommand:
        return StepCommand(
            "install",
            ["ninja", "-C", str(self.build_dir(source_dir)), "install"],
            source_dir,
            env={"DESTDIR": str(stage_dir)},
        )


class MesonStrategy(BuildStrategyAdapter):
    """``meson setup``, ``meson compile``, ``meson install --destdir``."""

    strategy = BuildStrategy.MESON
    build_dirname = "builddir"

    def configure(
        self, component: ComponentSpec, source_dir: Path, ctx: BuildContext
    ) -> StepCommand:
        cmd = [
            "meson",
            "setup",
            str(self.build_dir(source_dir)),
            f"--prefix={ctx.prefix}",
            "--buildtype=release",
            *component.flags,
        ]
        return StepCommand("configure", cmd, source_dir)

    def compile(
        self, component: ComponentSpec, source_dir: Path, ctx: BuildContext
    ) -> StepCommand:
        return StepCommand(
            "compile",
            ["meson", "compile", "-C", str(self.build_dir(source_dir)), "-j", str(ctx.jobs)],
            source_dir,
        )

    def install(
        self,
        component: ComponentSpec,
        source_dir: Path,
        stage_dir: Path,
        ctx: BuildContext,
    ) -> StepCommand:
        return StepCommand(
            "install",
            [
                "meson",
                "install",
                "-C",
                str(self.build_dir(source_dir)),
                "--destdir",
                str(stage_dir),
            ],
            source_dir,
        )


ADAPTERS: dict[BuildStrategy, type[BuildStrategyAdapter]] = {
    BuildStrategy.CONFIGURE: ConfigureStrategy,
    BuildStrategy.NINJA: NinjaStrategy,
    BuildStrategy.MESON: MesonStrategy,
}


def get_adapter(strategy: BuildStrategy) -> BuildStrategyAdapter:
    """Return the adapter for a compiled build strategy.

    Raises:
        ValueError: For strategies that do not compile (assets).
    """
    try:
        return ADAPTERS[strategy]()
    except KeyError:
        raise ValueError(f"No build adapter for strategy '{strategy.value}'") from None


__all__ = [
    "ADAPTERS",
    "BuildStrategyAdapter",
    "ConfigureStrategy",
    "MesonStrategy",
    "NinjaStrategy",
    "StepCommand",
    "cmake_standard_flags",
    "get_adapter",
]
