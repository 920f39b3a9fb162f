"""Command policy (subcommand allowlist and forbidden flags) tests.

Run with: python -m pytest tests/test_command_policy.py -v
"""

import pytest

from core.command_policy import ALLOWED_SUBCOMMANDS, VALUE_FLAGS, CommandPolicy, split_args
from core.errors import SubcommandRejected


def test_allowlist_is_static():
    assert set(ALLOWED_SUBCOMMANDS) == {"cat", "ls", "bazel", "git"}
    with pytest.raises(TypeError):
        ALLOWED_SUBCOMMANDS["sh"] = None


def test_subcommandless_tools_allowed():
    cp = CommandPolicy()
    cp.authorize("cat")
    cp.authorize("ls")


def test_bazel_subcommands():
    cp = CommandPolicy()
    cp.authorize("bazel", "build")
    cp.authorize("bazel", "test")
    for sub in ("run", "clean", "query", "shutdown", "Build", ""):
        with pytest.raises(SubcommandRejected):
            cp.authorize("bazel", sub)


def test_git_subcommands():
    cp = CommandPolicy()
    for sub in ("status", "add", "commit", "checkout"):
        cp.authorize("git", sub)
    for sub in ("push", "reset", "config", "rebase", "clone", "status "):
        with pytest.raises(SubcommandRejected):
            cp.authorize("git", sub)


def test_rejection_lists_allowed_subcommands():
    with pytest.raises(SubcommandRejected) as exc:
        CommandPolicy().authorize("git", "push")
    msg = exc.value.render()
    assert msg == "Error: Subcommand 'push' is not allowed. Allowed subcommands: status, add, commit, checkout"


def test_missing_subcommand():
    with pytest.raises(SubcommandRejected) as exc:
        CommandPolicy().authorize("bazel")
    assert "required" in exc.value.render()


def test_unknown_tool():
    with pytest.raises(SubcommandRejected):
        CommandPolicy().authorize("rm")


def test_git_forbidden_flags():
    cp = CommandPolicy()
    for flag in ("--no-verify", "--amend", "--force", "-f", "--exec", "--force=yes"):
        with pytest.raises(SubcommandRejected):
            cp.check_flags("git", ["-m", "msg", flag])
    cp.check_flags("git", ["-m", "force push later", "--", "src/main.py"])


def test_git_file_reading_flags():
    cp = CommandPolicy()
    for args in (
        ["--pathspec-from-file=/tmp/list"],
        ["--pathspec-from-file", "/tmp/list"],
        ["-F", "/tmp/msg"],
        ["-F/tmp/msg"],
        ["--file=/tmp/msg"],
        ["-t", "/tmp/tpl"],
        ["--template=/tmp/tpl"],
    ):
        with pytest.raises(SubcommandRejected):
            cp.check_flags("git", args)


def test_git_abbreviated_and_clustered_flags():
    cp = CommandPolicy()
    for args in (["--pathspec-from=x"], ["--no-verif"], ["--amen"], ["--forc"], ["-qf"], ["-aF", "msg"]):
        with pytest.raises(SubcommandRejected):
            cp.check_flags("git", args)
    # Option values are not options
    cp.check_flags("git", ["-m", "--force"])
    cp.check_flags("git", ["-mfix -f later"])
    cp.check_flags("git", ["--message", "-F"])
    cp.check_flags("git", ["-b", "fix", "--", "-f"])


def test_split_args():
    flags = VALUE_FLAGS["git"]
    assert split_args(["-m", "msg", "a.py"], flags) == (["-m"], ["a.py"])
    assert split_args(["--message=msg", "a.py"], flags) == (["--message=msg"], ["a.py"])
    assert split_args(["-qm", "msg", "b"], flags) == (["-qm"], ["b"])
    assert split_args(["-mmsg", "b"], flags) == (["-mmsg"], ["b"])
    assert split_args(["-A", "--", "-x", "--y"], flags) == (["-A"], ["-x", "--y"])
    assert split_args(["-"], flags) == ([], ["-"])


def test_other_tools_have_no_flag_rules():
    CommandPolicy().check_flags("ls", ["--force"])


def test_custom_allowlist():
    cp = CommandPolicy(allowed={"git": ("status",)})
    cp.authorize("git", "status")
    with pytest.raises(SubcommandRejected):
        cp.authorize("git", "commit")
    with pytest.raises(SubcommandRejected):
        cp.authorize("cat")
    assert cp.allowed_subcommands("git") == ("status",)
