"""Build orchestration for FiveM TypeScript resources.

Provides:
- Client/server target compilation through esbuild, one-shot or watching
- Web sub-project build or dev server with readiness detection
- One downstream trigger (manifest, types) per settled build pass
- Shutdown coordination so no child process outlives watch mode
"""

from .aggregator import CompletionAggregator
from .cleanup import GENERATED_PATHS, clear
from .compiler import EsbuildContext
from .manifest import ManifestError, generate_manifest
from .options import DEFAULT_TARGETS, BuildOptions, CompileOptions, Target, TargetName
from .orchestrator import BuildOrchestrator, build
from .shutdown import ShutdownCoordinator
from .state import BuildError, BuildState, CompileError, ExternalProcessError, PassResult
from .target import TargetSupervisor
from .typegen import TypeGenerationError, generate_types
from .web import (
    DEV_SERVER_READINESS,
    WATCH_BUILD_READINESS,
    ExternalProcessHandle,
    ReadinessDetector,
    run_web_build,
    start_web_processes,
)

__all__ = [
    "BuildOptions",
    "CompileOptions",
    "Target",
    "TargetName",
    "DEFAULT_TARGETS",
    "BuildState",
    "PassResult",
    "BuildError",
    "CompileError",
    "ExternalProcessError",
    "ManifestError",
    "TypeGenerationError",
    "EsbuildContext",
    "TargetSupervisor",
    "ReadinessDetector",
    "DEV_SERVER_READINESS",
    "WATCH_BUILD_READINESS",
    "ExternalProcessHandle",
    "run_web_build",
    "start_web_processes",
    "CompletionAggregator",
    "ShutdownCoordinator",
    "BuildOrchestrator",
    "build",
    "clear",
    "GENERATED_PATHS",
    "generate_manifest",
    "generate_types",
]
