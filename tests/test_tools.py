"""Tool registry, tool builders and path registry tests.

Run with: python -m pytest tests/test_tools.py -v
"""

import os
import shutil
import tempfile

from core.errors import ValidationError
from core.gateway import build_registry
from core.path_registry import PathRegistry
from core.tool_protocol import (
    COMMON_FIELDS, ToolDefinition, ToolInvocation, ToolRegistry, string_list,
)
from tools import build_tool, dir_list, file_read, git_tools


# ============================================================
# Registry
# ============================================================

def _dummy_definition(name="dummy"):
    return ToolDefinition(
        name=name,
        description="Dummy",
        properties={},
        builder=lambda arguments: ToolInvocation(),
        executable="cat",
    )


def test_registry_register_and_list():
    reg = ToolRegistry()
    reg.register_tool(_dummy_definition())
    tools = reg.list_tools()
    assert len(tools) == 1
    assert tools[0]["name"] == "dummy"
    assert tools[0]["inputSchema"]["type"] == "object"


def test_registry_duplicate_register():
    reg = ToolRegistry()
    reg.register_tool(_dummy_definition())
    try:
        reg.register_tool(_dummy_definition())
        assert False, "Should have raised ValueError"
    except ValueError:
        pass


def test_registry_unknown_tool():
    assert ToolRegistry().get_tool("nope") is None


def test_builtin_registry_has_four_tools():
    reg = build_registry()
    assert reg.names() == ["cat", "ls", "bazel", "git"]


def test_schemas_carry_common_fields():
    for tool in build_registry().list_tools():
        props = tool["inputSchema"]["properties"]
        for name in COMMON_FIELDS:
            assert name in props, (tool["name"], name)
        assert tool["inputSchema"]["additionalProperties"] is False


def test_required_fields_in_schema():
    schemas = {t["name"]: t["inputSchema"] for t in build_registry().list_tools()}
    assert schemas["cat"]["required"] == ["path"]
    assert schemas["ls"]["required"] == []
    assert schemas["bazel"]["required"] == ["subcommand", "target"]
    assert schemas["git"]["required"] == ["subcommand"]


def test_unknown_argument_rejected():
    try:
        file_read.DEFINITION.build({"path": "a.txt", "shell": True})
        assert False, "Should have raised ValidationError"
    except ValidationError as e:
        assert "shell" in e.message


def test_common_fields_accepted_by_every_tool():
    inv = dir_list.DEFINITION.build({"sort": True, "timeout_ms": 10, "env": {}})
    assert inv.paths == (".",)


# ============================================================
# Builders
# ============================================================

def test_cat_builder():
    inv = file_read.DEFINITION.build({"path": "README"})
    assert inv == ToolInvocation(paths=("README",))


def test_cat_requires_path():
    for arguments in ({}, {"path": None}, {"path": ""}, {"path": ["a"]}):
        try:
            file_read.DEFINITION.build(arguments)
            assert False, f"Should have rejected {arguments!r}"
        except ValidationError:
            pass


def test_ls_builder_defaults_to_cwd():
    assert dir_list.DEFINITION.build({}) == ToolInvocation(args=("-al",), paths=(".",))
    assert dir_list.DEFINITION.build({"path": "src"}).paths == ("src",)


def test_bazel_builder():
    inv = build_tool.DEFINITION.build({"subcommand": "test", "target": "//pkg:all_tests"})
    assert inv.subcommand == "test"
    assert inv.operands == ("//pkg:all_tests",)
    assert inv.paths == ()


def test_bazel_requires_target():
    try:
        build_tool.DEFINITION.build({"subcommand": "build"})
        assert False, "Should have raised ValidationError"
    except ValidationError as e:
        assert "target" in e.message


def test_git_builder():
    inv = git_tools.DEFINITION.build({"subcommand": "commit", "args": ["-m", "Fix typo"]})
    assert inv.subcommand == "commit"
    assert inv.args == ("-m", "Fix typo")
    assert git_tools.DEFINITION.build({"subcommand": "status"}).args == ()


def test_git_builder_collects_pathspecs():
    inv = git_tools.DEFINITION.build(
        {"subcommand": "commit", "args": ["-m", "Fix typo", "-q", "src/a.py", "--", "-odd-name"]}
    )
    assert inv.pathspecs == ("src/a.py", "-odd-name")
    inv = git_tools.DEFINITION.build({"subcommand": "checkout", "args": ["-b", "feature", "main"]})
    assert inv.pathspecs == ("main",)


def test_git_builder_rejects_pathspec_magic():
    try:
        git_tools.DEFINITION.build({"subcommand": "add", "args": [":/secret"]})
        assert False, "Should have raised ValidationError"
    except ValidationError as e:
        assert "Pathspec magic" in e.message


def test_string_list_validation():
    assert string_list({}, "args") == ()
    assert string_list({"args": ["a", "b"]}, "args") == ("a", "b")
    for bad in ("a b", [1], {"a": 1}, ["a", None]):
        try:
            string_list({"args": bad}, "args")
            assert False, f"Should have rejected {bad!r}"
        except ValidationError:
            pass


# ============================================================
# Path registry
# ============================================================

def test_path_registry_resolves_required():
    reg = PathRegistry()
    paths = reg.resolve_all()
    assert os.path.isabs(paths["cat"])
    assert os.path.isabs(paths["ls"])
    assert reg.get_optional("cat") == paths["cat"]


def test_path_registry_missing_required():
    reg = PathRegistry(binaries={"nope": (("cmdgate-no-such-binary",), True)})
    try:
        reg.resolve_all()
        assert False, "Should have raised RuntimeError"
    except RuntimeError as e:
        assert "nope" in str(e)


def test_path_registry_missing_optional_warns():
    reg = PathRegistry(binaries={"ghost": (("cmdgate-no-such-binary",), False)})
    assert reg.resolve_all() == {}
    assert reg.get_optional("ghost") is None
    assert any("ghost" in w for w in reg.warnings)


def test_path_registry_uses_search_path_and_resolves_links():
    tmpdir = os.path.realpath(tempfile.mkdtemp(prefix="cmdgate_test_"))
    try:
        target = os.path.join(tmpdir, "real-tool")
        with open(target, "w") as f:
            f.write("#!/bin/sh\n")
        os.chmod(target, 0o755)
        os.symlink(target, os.path.join(tmpdir, "tool"))
        reg = PathRegistry(binaries={"tool": (("missing-tool", "tool"), True)})
        assert reg.resolve_all(search_path=tmpdir) == {"tool": target}
    finally:
        shutil.rmtree(tmpdir)


def test_path_registry_preset_paths():
    reg = PathRegistry({"cat": "/bin/cat"})
    assert reg.get_optional("cat") == "/bin/cat"
    assert reg.get_optional("git") is None
