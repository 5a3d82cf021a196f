import ast
from pathlib import Path

_SKIPPED_DECORATORS = {"property", "overload"}


def _python_files() -> list[Path]:
    src = Path(__file__).resolve().parents[1] / "src"
    return sorted(
        path
        for package in ("procfun", "pfr")
        for path in (src / package).rglob("*.py")
        if "__pycache__" not in path.parts
    )


def _decorator_names(node: ast.FunctionDef | ast.AsyncFunctionDef) -> set[str]:
    names: set[str] = set()
    for decorator in node.decorator_list:
        if isinstance(decorator, ast.Name):
            names.add(decorator.id)
        elif isinstance(decorator, ast.Attribute):
            names.add(decorator.attr)
    return names


def _public_functions(module: ast.Module) -> list[ast.FunctionDef | ast.AsyncFunctionDef]:
    found: list[ast.FunctionDef | ast.AsyncFunctionDef] = []
    scopes: list[list[ast.stmt]] = [module.body]
    scopes.extend(node.body for node in module.body if isinstance(node, ast.ClassDef))
    for body in scopes:
        for node in body:
            if not isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef)):
                continue
            if node.name.startswith("_") or _decorator_names(node) & _SKIPPED_DECORATORS:
                continue
            found.append(node)
    return found


def test_public_functions_have_docstring_with_example() -> None:
    missing: list[str] = []
    missing_example: list[str] = []

    for file_path in _python_files():
        module = ast.parse(file_path.read_text(encoding="utf-8"))
        for node in _public_functions(module):
            doc = ast.get_docstring(node)
            location = f"{file_path}:{node.lineno}:{node.name}"
            if not doc:
                missing.append(location)
                continue
            if "Example:" not in doc:
                missing_example.append(location)

    assert not missing, "Missing function docstrings:\n" + "\n".join(missing)
    assert not missing_example, "Docstrings without Example section:\n" + "\n".join(
        missing_example
    )
