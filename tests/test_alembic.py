"""
test_alembic.py — Verify Alembic migration setup and structure.

Reads the migration and env.py as source (ast) so nothing needs Alembic's
runtime context, then checks them against the model metadata.

Called by: pytest
Depends on: alembic/, secondlook.models
"""

import ast
from pathlib import Path

from secondlook.models import Base

ROOT = Path(__file__).parent.parent
MIGRATION_DIR = ROOT / "alembic" / "versions"


def _migration_tree() -> ast.Module:
    files = sorted(MIGRATION_DIR.glob("*.py"))
    assert len(files) == 1, "Expected a single baseline migration"
    return ast.parse(files[0].read_text())


def _assignments(tree: ast.Module) -> dict:
    out = {}
    for node in tree.body:
        if isinstance(node, ast.AnnAssign) and isinstance(node.target, ast.Name) and node.value is not None:
            out[node.target.id] = ast.literal_eval(node.value)
        elif isinstance(node, ast.Assign) and isinstance(node.targets[0], ast.Name):
            try:
                out[node.targets[0].id] = ast.literal_eval(node.value)
            except ValueError:
                pass
    return out


def _op_calls(tree: ast.Module, func_name: str, op_name: str) -> list[str]:
    func = next(n for n in tree.body if isinstance(n, ast.FunctionDef) and n.name == func_name)
    names = []
    for node in ast.walk(func):
        if (
            isinstance(node, ast.Call)
            and isinstance(node.func, ast.Attribute)
            and node.func.attr == op_name
            and node.args
            and isinstance(node.args[0], ast.Constant)
        ):
            names.append(node.args[0].value)
    return names


def test_initial_migration_has_required_attributes():
    values = _assignments(_migration_tree())
    assert values["revision"] == "001_initial"
    assert values["down_revision"] is None, "Initial migration should have no parent"


def test_upgrade_creates_every_model_table():
    created = _op_calls(_migration_tree(), "upgrade", "create_table")
    assert set(created) == set(Base.metadata.tables)
    assert len(created) == len(set(created))


def _dropped_tables(tree: ast.Module) -> list[str]:
    func = next(n for n in tree.body if isinstance(n, ast.FunctionDef) and n.name == "downgrade")
    loop = next(n for n in ast.walk(func) if isinstance(n, ast.For))
    return list(ast.literal_eval(loop.iter))


def test_downgrade_drops_every_table_in_reverse():
    tree = _migration_tree()
    created = _op_calls(tree, "upgrade", "create_table")
    dropped = _dropped_tables(tree)
    assert dropped == list(reversed(created))


def test_sources_created_before_dependent_tables():
    created = _op_calls(_migration_tree(), "upgrade", "create_table")
    for name, table in Base.metadata.tables.items():
        for fk in table.foreign_keys:
            parent = fk.column.table.name
            assert created.index(parent) < created.index(name), f"{name} created before {parent}"


def test_env_uses_project_metadata():
    env_src = (ROOT / "alembic" / "env.py").read_text()
    assert "from secondlook.models import Base" in env_src
    assert "target_metadata = Base.metadata" in env_src
    assert "dburl" in env_src
    assert "render_as_batch" in env_src


def test_alembic_ini_points_at_scripts():
    ini = (ROOT / "alembic.ini").read_text()
    assert "script_location = alembic" in ini
