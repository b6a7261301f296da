from __future__ import annotations

import argparse
import ast
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Sequence

SRC_ROOT = Path(__file__).resolve().parents[1] / "src"

PERSISTENCE_MODULES = frozenset({"sqlalchemy", "alembic", "psycopg"})


@dataclass(frozen=True)
class LayerRule:
    name: str
    package: str
    forbidden: frozenset[str]

    @property
    def path(self) -> Path:
        return SRC_ROOT.joinpath(*self.package.split("."))


LAYER_RULES: dict[str, LayerRule] = {
    rule.name: rule
    for rule in (
        LayerRule(
            "domain",
            "rpos.domain",
            PERSISTENCE_MODULES
            | {
                "pydantic",
                "opentelemetry",
                "prometheus_client",
                "rpos.application",
                "rpos.infrastructure",
                "rpos.bootstrap",
                "rpos.tools",
            },
        ),
        LayerRule(
            "application",
            "rpos.application",
            PERSISTENCE_MODULES | {"rpos.infrastructure", "rpos.bootstrap", "rpos.tools"},
        ),
        LayerRule("infrastructure", "rpos.infrastructure", frozenset({"rpos.bootstrap"})),
    )
}


@dataclass(frozen=True)
class Violation:
    layer: str
    file_path: Path
    line: int
    module: str


def _python_files(root: Path) -> Iterable[Path]:
    if root.is_file() and root.suffix == ".py":
        yield root
        return
    if root.is_dir():
        yield from sorted(root.rglob("*.py"))


def _is_forbidden(module: str, forbidden: frozenset[str]) -> bool:
    return any(module == item or module.startswith(f"{item}.") for item in forbidden)


def _importing_package(file_path: Path, root: Path, package: str) -> list[str]:
    relative = file_path.relative_to(root) if root.is_dir() else Path(file_path.name)
    return package.split(".") + list(relative.parent.parts)


def _imported_modules(
    node: ast.AST,
    file_path: Path,
    root: Path,
    package: str,
) -> Iterable[str]:
    if isinstance(node, ast.Import):
        for alias in node.names:
            yield alias.name
    elif isinstance(node, ast.ImportFrom):
        if node.level == 0:
            if node.module:
                yield node.module
            return
        base = _importing_package(file_path, root, package)
        anchor = base[: len(base) - (node.level - 1)]
        target = ".".join(anchor + ([node.module] if node.module else []))
        if node.module:
            yield target
        else:
            for alias in node.names:
                yield f"{target}.{alias.name}"


def scan_layer(rule: LayerRule, root: Path | None = None) -> list[Violation]:
    scan_root = root or rule.path
    violations: list[Violation] = []
    for file_path in _python_files(scan_root):
        tree = ast.parse(file_path.read_text(encoding="utf-8"), filename=str(file_path))
        for node in ast.walk(tree):
            for module in _imported_modules(node, file_path, scan_root, rule.package):
                if _is_forbidden(module, rule.forbidden):
                    violations.append(
                        Violation(
                            layer=rule.name,
                            file_path=file_path,
                            line=getattr(node, "lineno", 0),
                            module=module,
                        )
                    )
    return violations


def find_violations(layers: Sequence[str], paths: Sequence[Path] = ()) -> list[Violation]:
    violations: list[Violation] = []
    for layer in layers:
        rule = LAYER_RULES[layer]
        if paths:
            for path in paths:
                violations.extend(scan_layer(rule, path))
        else:
            violations.extend(scan_layer(rule))
    return violations


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Layer dependency policy check for the rpos package."
    )
    parser.add_argument(
        "--layer",
        action="append",
        choices=sorted(LAYER_RULES),
        default=[],
        help="Layer rule to enforce (repeatable). Defaults to every layer.",
    )
    parser.add_argument(
        "--path",
        action="append",
        default=[],
        help="Path to scan under the selected layer rules instead of src/rpos/<layer>.",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)
    layers = args.layer or list(LAYER_RULES)
    if args.path and not args.layer:
        layers = ["domain"]

    violations = find_violations(layers, [Path(item) for item in args.path])
    if not violations:
        print(f"depcheck passed: {', '.join(layers)}")
        return 0

    print("depcheck failed: forbidden imports detected")
    for violation in violations:
        print(f"[{violation.layer}] {violation.file_path}:{violation.line} -> {violation.module}")
    return 1


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
