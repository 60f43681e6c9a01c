"""
Kernel driver handling and the hardware programming utility.

The programming utility talks to the NIC through its own kernel module
(``pgdrv``). The regular vendor drivers hold the device, so they are
removed first and restored by ``release()`` once the write is done. A
module built against a displaced vendor driver is cached as
``<driver>_mod_<kernel>.ko`` so later runs on the same kernel skip the
compile step.
"""
from __future__ import annotations

import os
import platform
from typing import List, Optional, Set

from macpool.config import ProvisioningSettings
from macpool.errors import DriverLoadFailure, HardwareWriteError
from macpool.logger import get_logger
from macpool.provisioning.ports import CommandRunner, DriverManager, ModuleInspector, ProgrammingTool

log = get_logger("MacPool.Driver")


def parse_lsmod(output: str) -> Set[str]:
    modules = set()
    for line in output.splitlines()[1:]:
        fields = line.split()
        if fields:
            modules.add(fields[0])
    return modules


class LsmodInspector(ModuleInspector):
    def __init__(self, runner: CommandRunner):
        self.runner = runner

    def is_loaded(self, module: str) -> bool:
        result = self.runner.run(["lsmod"])
        if not result.ok:
            return False
        return module in parse_lsmod(result.stdout)


class KernelDriverManager(DriverManager):
    def __init__(self, runner: CommandRunner, inspector: ModuleInspector,
                 settings: ProvisioningSettings, kernel: Optional[str] = None):
        self.runner = runner
        self.inspector = inspector
        self.settings = settings
        self.kernel = kernel or platform.release()
        self.removed_driver: Optional[str] = None

    @property
    def driver_dir(self) -> str:
        return self.settings.driver_dir

    @property
    def built_module(self) -> str:
        return os.path.join(self.driver_dir, self.settings.programming_module + ".ko")

    @property
    def target_module(self) -> str:
        if self.removed_driver:
            return os.path.join(self.driver_dir, f"{self.removed_driver}_mod_{self.kernel}.ko")
        return self.built_module

    def _require_sources(self) -> None:
        if not os.path.isdir(self.driver_dir):
            raise DriverLoadFailure(f"Directory {self.driver_dir} does not exist, cannot build driver")

    def _remove_conflicting(self) -> None:
        for module in self.settings.conflicting_modules:
            if not self.inspector.is_loaded(module):
                continue
            log.info(f"Removing module: {module}")
            result = self.runner.run(["rmmod", module])
            if result.ok:
                log.info(f"Module {module} successfully removed")
                self.removed_driver = module
            else:
                log.warning(f"Could not remove module {module}: {result.output}")

    def _compile(self) -> None:
        log.info(f"Compiling module {self.settings.programming_module} in {self.driver_dir}")
        result = self.runner.run(["make", "-C", self.driver_dir, "clean", "all"])
        if not result.ok:
            raise DriverLoadFailure(f"Compilation failed: {result.output or result.returncode}")
        log.info("Compilation completed successfully")

    def _insmod(self, path: str) -> None:
        result = self.runner.run(["insmod", path])
        if not result.ok:
            raise DriverLoadFailure(f"Failed to load module {path}: {result.output or result.returncode}")
        log.info(f"Module {path} loaded successfully")

    def load(self) -> None:
        self._require_sources()
        self._remove_conflicting()

        if self.inspector.is_loaded(self.settings.programming_module):
            log.info(f"Module {self.settings.programming_module} is already loaded")
            return

        target = self.target_module
        if os.path.exists(target):
            log.info(f"Found existing driver file {target}. Loading it")
            self._insmod(target)
            return

        if not os.path.exists(self.built_module):
            self._compile()
            if not os.path.exists(self.built_module):
                raise DriverLoadFailure(f"Compiled module {self.built_module} not found")

        if target != self.built_module:
            try:
                os.replace(self.built_module, target)
            except OSError as exc:
                raise DriverLoadFailure(f"Failed to rename {self.built_module} to {target}: {exc}") from exc
        self._insmod(target)

    def recompile(self) -> None:
        self._require_sources()
        if self.inspector.is_loaded(self.settings.programming_module):
            self.runner.run(["rmmod", self.settings.programming_module])
        if self.target_module != self.built_module and os.path.exists(self.target_module):
            os.remove(self.target_module)
        self._compile()
        log.info("Driver recompilation successful")

    def release(self) -> List[str]:
        warnings: List[str] = []
        self.runner.run(["rmmod", self.settings.programming_module])
        if self.removed_driver:
            result = self.runner.run(["modprobe", self.removed_driver])
            if not result.ok:
                message = f"Failed to modprobe {self.removed_driver}: {result.output or result.returncode}"
                log.warning(message)
                warnings.append(message)
        return warnings


class RtnicpgTool(ProgrammingTool):
    """``rtnicpg-<arch> /efuse /nicmac /nodeid <HEX>``."""

    def __init__(self, runner: CommandRunner, driver_dir: str, machine: Optional[str] = None):
        self.runner = runner
        self.driver_dir = driver_dir
        self.machine = machine or platform.machine()

    @property
    def path(self) -> str:
        return os.path.join(self.driver_dir, f"rtnicpg-{self.machine}")

    def write(self, address_hex: str) -> None:
        if not os.path.isfile(self.path):
            raise HardwareWriteError(f"Programming utility {self.path} not found")
        try:
            os.chmod(self.path, 0o755)
        except OSError as exc:
            raise HardwareWriteError(f"Failed to chmod {self.path}: {exc}") from exc

        result = self.runner.run([self.path, "/efuse", "/nicmac", "/nodeid", address_hex], cwd=self.driver_dir)
        if not result.ok:
            raise HardwareWriteError(f"{os.path.basename(self.path)} exited with {result.returncode}: {result.output}")
