# SPDX-License-Identifier: MIT
"""Tests for cargo_call_stack.wrapper."""

import io
import subprocess
from pathlib import Path
from unittest.mock import patch

import pytest

from cargo_call_stack.build.sidechannel import MarkerKind, parse_marker, read_side_channel
from cargo_call_stack.core.errors import WrapperError
from cargo_call_stack.wrapper import (
    Mode,
    WrapperInvocation,
    codegen_option,
    extern_path,
    intercept,
    is_compiler_builtins_invocation,
    option_values,
    run_wrapper,
    select_mode,
    with_llvm_ir,
)

RUSTC = "/home/dev/.rustup/toolchains/nightly-x86_64-unknown-linux-gnu/bin/rustc"
OUT_DIR = "/work/app/target/thumbv7m-none-eabi/release/deps"

# Argument vectors captured from `cargo rustc -Zbuild-std` builds.
COMPILER_BUILTINS_ARGS = [
    "--crate-name",
    "compiler_builtins",
    "--edition=2021",
    "/home/dev/.cargo/registry/src/index.crates.io-6f17d22bba15001f/"
    "compiler_builtins-0.1.109/src/lib.rs",
    "--error-format=json",
    "--json=diagnostic-rendered-ansi,artifacts,future-incompat",
    "--crate-type",
    "lib",
    "--emit=dep-info,metadata,link",
    "-C",
    "opt-level=3",
    "-C",
    "embed-bitcode=no",
    "--cfg",
    'feature="compiler-builtins"',
    "--cfg",
    'feature="mem"',
    "-C",
    "metadata=5b4c3a2e1f0d9c8b",
    "-C",
    "extra-filename=-5b4c3a2e1f0d9c8b",
    "--out-dir",
    OUT_DIR,
    "--target",
    "thumbv7m-none-eabi",
    "-Z",
    "force-unstable-if-unmarked",
    "-L",
    f"dependency={OUT_DIR}",
    "-L",
    "dependency=/work/app/target/release/deps",
    "--extern",
    "core=/work/app/target/thumbv7m-none-eabi/release/deps/librustc_std_workspace_core-1a2b.rlib",
    "--cap-lints",
    "allow",
    "-C",
    "codegen-units=10000",
]

COMPILER_BUILTINS_BUILD_SCRIPT_ARGS = [
    "--crate-name",
    "build_script_build",
    "--edition=2021",
    "/home/dev/.cargo/registry/src/index.crates.io-6f17d22bba15001f/"
    "compiler_builtins-0.1.109/build.rs",
    "--error-format=json",
    "--crate-type",
    "bin",
    "--emit=dep-info,link",
    "-C",
    "extra-filename=-0f1e2d3c",
    "--out-dir",
    "/work/app/target/release/build/compiler_builtins-0f1e2d3c",
]

CORE_ARGS = [
    "--crate-name",
    "core",
    "--edition=2021",
    "/home/dev/.rustup/toolchains/nightly/lib/rustlib/src/rust/library/core/src/lib.rs",
    "--crate-type",
    "lib",
    "--emit=dep-info,metadata,link",
    "-C",
    "extra-filename=-9a8b7c6d",
    "--out-dir",
    OUT_DIR,
    "--target",
    "thumbv7m-none-eabi",
]

APP_ARGS = [
    "--crate-name",
    "app",
    "--edition=2021",
    "src/main.rs",
    "--crate-type",
    "bin",
    "--emit=dep-info,link",
    "--emit=llvm-ir,obj",
    "-C",
    "embed-bitcode=yes",
    "-C",
    "lto=fat",
    "-C",
    "extra-filename=-1234abcd",
    "--out-dir",
    OUT_DIR,
]


APP_LINKING_ARGS = [
    *APP_ARGS,
    "--extern",
    f"noprelude:compiler_builtins={OUT_DIR}/libcompiler_builtins-5b4c3a2e1f0d9c8b.rlib",
    "--extern",
    f"noprelude:core={OUT_DIR}/libcore-9a8b7c6d.rlib",
]


class TestSelectMode:
    def test_normal(self):
        assert select_mode({}) is Mode.NORMAL

    def test_intercept(self):
        assert select_mode({"CARGO_CALL_STACK_RUSTC_WRAPPER": "1"}) is Mode.INTERCEPT

    def test_sentinel_value_does_not_matter(self):
        assert select_mode({"CARGO_CALL_STACK_RUSTC_WRAPPER": ""}) is Mode.INTERCEPT


class TestOptionValues:
    def test_separate_and_joined(self):
        args = ["--out-dir", "/a", "--out-dir=/b"]
        assert option_values(args, "--out-dir") == ["/a", "/b"]

    def test_codegen_forms(self):
        args = ["-C", "opt-level=3", "-Cextra-filename=-x", "--codegen", "lto=fat"]
        assert codegen_option(args, "extra-filename") == "-x"
        assert codegen_option(args, "lto") == "fat"
        assert codegen_option(args, "debuginfo") is None

    def test_dangling_option(self):
        assert option_values(["--crate-name"], "--crate-name") == []


class TestExternPath:
    def test_with_modifiers(self):
        args = [
            "--extern",
            "noprelude:core=/d/libcore-1.rlib",
            "--extern=priv,noprelude:alloc=/d/liballoc-2.rlib",
        ]
        assert extern_path(args, "core") == "/d/libcore-1.rlib"
        assert extern_path(args, "alloc") == "/d/liballoc-2.rlib"

    def test_plain_and_missing(self):
        args = ["--extern", "log=/d/liblog-3.rlib", "--extern", "proc_macro"]
        assert extern_path(args, "log") == "/d/liblog-3.rlib"
        assert extern_path(args, "proc_macro") is None
        assert extern_path(args, "compiler_builtins") is None


class TestIsCompilerBuiltinsInvocation:
    def test_compiler_builtins_library(self):
        assert is_compiler_builtins_invocation(COMPILER_BUILTINS_ARGS) is True

    def test_compiler_builtins_build_script(self):
        assert is_compiler_builtins_invocation(COMPILER_BUILTINS_BUILD_SCRIPT_ARGS) is False

    def test_other_std_crate(self):
        assert is_compiler_builtins_invocation(CORE_ARGS) is False

    def test_application_crate(self):
        assert is_compiler_builtins_invocation(APP_ARGS) is False

    @pytest.mark.parametrize(
        "args",
        [
            ["-vV"],
            ["-", "--crate-name", "___", "--print=file-names", "--crate-type", "bin"],
            ["--print=cfg", "--target", "thumbv7m-none-eabi"],
            [],
        ],
    )
    def test_toolchain_queries(self, args):
        assert is_compiler_builtins_invocation(args) is False

    def test_joined_crate_name(self):
        assert is_compiler_builtins_invocation(
            ["--crate-name=compiler_builtins", "--crate-type=rlib"]
        )

    def test_no_crate_type(self):
        assert is_compiler_builtins_invocation(["--crate-name", "compiler_builtins"])

    def test_similar_name(self):
        assert not is_compiler_builtins_invocation(
            ["--crate-name", "compiler_builtins_shim", "--crate-type", "lib"]
        )


class TestWithLlvmIr:
    def test_extends_emit(self):
        assert with_llvm_ir(["--emit=dep-info,metadata,link", "-O"]) == [
            "--emit=dep-info,metadata,link,llvm-ir",
            "-O",
        ]

    def test_separate_emit(self):
        assert with_llvm_ir(["--emit", "link"]) == ["--emit", "link,llvm-ir"]

    def test_already_present(self):
        args = ["--emit=link,llvm-ir"]
        assert with_llvm_ir(args) == args

    def test_no_emit(self):
        assert with_llvm_ir(["-O"]) == ["-O", "--emit=link,llvm-ir"]

    def test_does_not_modify_input(self):
        args = ["--emit=link"]
        with_llvm_ir(args)
        assert args == ["--emit=link"]


class TestIntercept:
    def test_forwards_ordinary_invocation_unchanged(self):
        invocation = WrapperInvocation(argv=[RUSTC, *CORE_ARGS], cwd=Path("/work/app"))
        result = intercept(invocation)
        assert result.forward_argv == [RUSTC, *CORE_ARGS]
        assert result.markers == []

    def test_forwards_version_query(self):
        result = intercept(WrapperInvocation(argv=[RUSTC, "-vV"]))
        assert result.forward_argv == [RUSTC, "-vV"]
        assert result.markers == []

    def test_linked_compiler_builtins_markers(self):
        result = intercept(WrapperInvocation(argv=[RUSTC, *APP_LINKING_ARGS]))
        assert result.forward_argv == [RUSTC, *APP_LINKING_ARGS]
        assert [parse_marker(m) for m in result.markers] == [
            (
                MarkerKind.COMPILER_BUILTINS_RLIB,
                f"{OUT_DIR}/libcompiler_builtins-5b4c3a2e1f0d9c8b.rlib",
            ),
            (
                MarkerKind.COMPILER_BUILTINS_LL,
                f"{OUT_DIR}/compiler_builtins-5b4c3a2e1f0d9c8b.ll",
            ),
        ]

    def test_linked_metadata_only_is_ignored(self):
        rmeta = f"compiler_builtins={OUT_DIR}/libcompiler_builtins-1.rmeta"
        args = [*APP_ARGS, "--extern", rmeta]
        result = intercept(WrapperInvocation(argv=[RUSTC, *args]))
        assert result.markers == []
        assert result.outputs == []

    def test_compiler_builtins_markers(self):
        invocation = WrapperInvocation(
            argv=[RUSTC, *COMPILER_BUILTINS_ARGS], cwd=Path("/work/app")
        )
        result = intercept(invocation)

        assert [parse_marker(m) for m in result.markers] == [
            (
                MarkerKind.COMPILER_BUILTINS_RLIB,
                f"{OUT_DIR}/libcompiler_builtins-5b4c3a2e1f0d9c8b.rlib",
            ),
            (
                MarkerKind.COMPILER_BUILTINS_LL,
                f"{OUT_DIR}/compiler_builtins-5b4c3a2e1f0d9c8b.ll",
            ),
        ]

    def test_compiler_builtins_emits_llvm_ir(self):
        invocation = WrapperInvocation(argv=[RUSTC, *COMPILER_BUILTINS_ARGS])
        result = intercept(invocation)
        assert result.forward_argv[0] == RUSTC
        assert "--emit=dep-info,metadata,link,llvm-ir" in result.forward_argv
        assert len(result.forward_argv) == len(COMPILER_BUILTINS_ARGS) + 3

    def test_compiler_builtins_single_codegen_unit(self):
        result = intercept(WrapperInvocation(argv=[RUSTC, *COMPILER_BUILTINS_ARGS]))
        assert result.forward_argv[-2:] == ["-C", "codegen-units=1"]
        assert codegen_option(result.forward_argv[1:], "codegen-units") == "1"

    def test_compiler_builtins_outputs(self):
        result = intercept(WrapperInvocation(argv=[RUSTC, *COMPILER_BUILTINS_ARGS]))
        assert result.outputs == [
            Path(OUT_DIR) / "libcompiler_builtins-5b4c3a2e1f0d9c8b.rlib",
            Path(OUT_DIR) / "compiler_builtins-5b4c3a2e1f0d9c8b.ll",
        ]

    def test_relative_out_dir(self):
        invocation = WrapperInvocation(
            argv=[RUSTC, "--crate-name", "compiler_builtins", "--out-dir", "target/deps"],
            cwd=Path("/work/app"),
        )
        rlib, ll = [parse_marker(m)[1] for m in intercept(invocation).markers]
        assert rlib == "/work/app/target/deps/libcompiler_builtins.rlib"
        assert ll == "/work/app/target/deps/compiler_builtins.ll"

    def test_missing_out_dir(self):
        invocation = WrapperInvocation(argv=[RUSTC, "--crate-name", "compiler_builtins"])
        with pytest.raises(WrapperError, match="--out-dir"):
            intercept(invocation)

    def test_no_compiler(self):
        with pytest.raises(WrapperError, match="RUSTC_WRAPPER"):
            intercept(WrapperInvocation(argv=[]))

    def test_markers_round_trip_through_reader(self):
        result = intercept(WrapperInvocation(argv=[RUSTC, *COMPILER_BUILTINS_ARGS]))
        markers = read_side_channel([m + "\n" for m in result.markers], io.StringIO())
        assert set(markers) == set(MarkerKind)


class TestRunWrapper:
    def _builtins_args(self, out_dir):
        return [
            "--crate-name",
            "compiler_builtins",
            "--crate-type",
            "lib",
            "--emit=dep-info,metadata,link",
            "-C",
            "codegen-units=16",
            "-C",
            "extra-filename=-abc",
            "--out-dir",
            str(out_dir),
        ]

    def test_ordinary_invocation_writes_nothing(self):
        stderr = io.StringIO()
        with patch(
            "subprocess.run", return_value=subprocess.CompletedProcess([], 0)
        ) as mock:
            rc = run_wrapper([RUSTC, *CORE_ARGS], stderr)
        assert rc == 0
        mock.assert_called_once_with([RUSTC, *CORE_ARGS])
        assert stderr.getvalue() == ""

    def test_compiler_builtins_writes_markers(self, tmp_path):
        (tmp_path / "libcompiler_builtins-abc.rlib").write_bytes(b"!<arch>\n")
        (tmp_path / "compiler_builtins-abc.ll").write_text("; ModuleID\n")
        stderr = io.StringIO()
        with patch("subprocess.run", return_value=subprocess.CompletedProcess([], 0)):
            rc = run_wrapper([RUSTC, *self._builtins_args(tmp_path)], stderr)
        assert rc == 0
        lines = stderr.getvalue().splitlines()
        assert [parse_marker(line) for line in lines] == [
            (
                MarkerKind.COMPILER_BUILTINS_RLIB,
                str(tmp_path / "libcompiler_builtins-abc.rlib"),
            ),
            (MarkerKind.COMPILER_BUILTINS_LL, str(tmp_path / "compiler_builtins-abc.ll")),
        ]

    def test_forwards_single_codegen_unit(self, tmp_path):
        with patch(
            "subprocess.run", return_value=subprocess.CompletedProcess([], 0)
        ) as mock:
            run_wrapper([RUSTC, *self._builtins_args(tmp_path)], io.StringIO())
        forwarded = mock.call_args.args[0]
        assert forwarded[0] == RUSTC
        assert forwarded[-2:] == ["-C", "codegen-units=1"]

    def test_missing_outputs_write_no_markers(self, tmp_path, caplog):
        stderr = io.StringIO()
        with patch("subprocess.run", return_value=subprocess.CompletedProcess([], 0)):
            rc = run_wrapper([RUSTC, *self._builtins_args(tmp_path)], stderr)
        assert rc == 0
        assert stderr.getvalue() == ""
        assert str(tmp_path / "libcompiler_builtins-abc.rlib") in caplog.text
        assert str(tmp_path / "compiler_builtins-abc.ll") in caplog.text

    def test_missing_ll_writes_no_markers(self, tmp_path, caplog):
        (tmp_path / "libcompiler_builtins-abc.rlib").write_bytes(b"!<arch>\n")
        cgu = "compiler_builtins-abc.compiler_builtins.1a2b-cgu.00.rcgu.ll"
        (tmp_path / cgu).write_text("")
        stderr = io.StringIO()
        with patch("subprocess.run", return_value=subprocess.CompletedProcess([], 0)):
            rc = run_wrapper([RUSTC, *self._builtins_args(tmp_path)], stderr)
        assert rc == 0
        assert stderr.getvalue() == ""
        assert "compiler_builtins-abc.ll" in caplog.text
        assert "libcompiler_builtins-abc.rlib" not in caplog.text

    def test_cached_compiler_builtins_reported_by_linking_crate(self, tmp_path):
        (tmp_path / "libcompiler_builtins-abc.rlib").write_bytes(b"!<arch>\n")
        (tmp_path / "compiler_builtins-abc.ll").write_text("; ModuleID\n")
        args = [
            *APP_ARGS,
            "--extern",
            f"noprelude:compiler_builtins={tmp_path}/libcompiler_builtins-abc.rlib",
        ]
        stderr = io.StringIO()
        with patch(
            "subprocess.run", return_value=subprocess.CompletedProcess([], 0)
        ) as mock:
            rc = run_wrapper([RUSTC, *args], stderr)
        assert rc == 0
        mock.assert_called_once_with([RUSTC, *args])
        markers = read_side_channel(stderr.getvalue().splitlines(keepends=True), io.StringIO())
        assert markers == {
            MarkerKind.COMPILER_BUILTINS_RLIB: str(tmp_path / "libcompiler_builtins-abc.rlib"),
            MarkerKind.COMPILER_BUILTINS_LL: str(tmp_path / "compiler_builtins-abc.ll"),
        }

    def test_failed_compile_writes_no_markers(self):
        stderr = io.StringIO()
        with patch("subprocess.run", return_value=subprocess.CompletedProcess([], 1)):
            rc = run_wrapper([RUSTC, *COMPILER_BUILTINS_ARGS], stderr)
        assert rc == 1
        assert stderr.getvalue() == ""

    def test_propagates_exit_code(self):
        with patch("subprocess.run", return_value=subprocess.CompletedProcess([], 101)):
            assert run_wrapper([RUSTC, *APP_ARGS], io.StringIO()) == 101

    def test_compiler_cannot_run(self):
        with patch("subprocess.run", side_effect=FileNotFoundError(2, "No such file")):
            with pytest.raises(WrapperError, match="failed to run"):
                run_wrapper(["/no/rustc", "-vV"], io.StringIO())
