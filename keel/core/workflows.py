"""
Built-in phase families.

core:  init -> lint -> verify -> build -> {run, test}; test -> release -> publish
code:  code-<phase>, each specializing its core phase and chained like core
hooks: pre-commit, pre-push, commit-msg (standalone)
"""

from keel.core.phase import Phase, PhaseGraph

CODE_PREFIX = "code-"

CORE_PHASES: tuple[Phase, ...] = (
    Phase("init", "Prepare the workspace"),
    Phase("lint", "Static checks and formatting", depends_on=("init",)),
    Phase("verify", "Verify sources and configuration", depends_on=("lint",)),
    Phase("build", "Compile and assemble", depends_on=("verify",)),
    Phase("run", "Run the built project", depends_on=("build",)),
    Phase("test", "Run tests", depends_on=("build",)),
    Phase("release", "Prepare a release", depends_on=("test",)),
    Phase("publish", "Publish release artifacts", depends_on=("release",)),
)


def _code_variant(phase: Phase) -> Phase:
    return Phase(
        CODE_PREFIX + phase.id,
        f"{phase.description} (code)",
        specializes=phase.id,
        depends_on=tuple(CODE_PREFIX + dep for dep in phase.depends_on),
    )


CODE_PHASES: tuple[Phase, ...] = tuple(_code_variant(phase) for phase in CORE_PHASES)

HOOK_PHASES: tuple[Phase, ...] = (
    Phase("pre-commit", "Git pre-commit hook"),
    Phase("pre-push", "Git pre-push hook"),
    Phase("commit-msg", "Git commit-msg hook"),
)

BUILTIN_FAMILIES: dict[str, tuple[Phase, ...]] = {
    "core": CORE_PHASES,
    "code": CODE_PHASES,
    "hooks": HOOK_PHASES,
}


def register_builtin_phases(graph: PhaseGraph) -> None:
    """Register the core, code and hook phase families on a graph."""
    for family in BUILTIN_FAMILIES.values():
        for phase in family:
            graph.register(phase)
