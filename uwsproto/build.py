"""Build driver composing compiler flags from the environment and compiling the examples."""

from __future__ import annotations

import os
import subprocess
import sys
from dataclasses import dataclass
from typing import Mapping, Optional, Sequence

EXAMPLE_FILES = (
    "Http3Server",
    "Broadcast",
    "HelloWorld",
    "Crc32",
    "ServerName",
    "EchoServer",
    "BroadcastingEchoServer",
    "UpgradeSync",
    "UpgradeAsync",
    "HelloHttpServer",
)

_BASE_CXXFLAGS = (
    " -march=native -O3 -Wpedantic -Wall -Wextra -Wsign-conversion -Wconversion"
    " -std=c++20 -Isrc -IuSockets/src"
)

_PLACEHOLDER_TARGETS = ("capi", "clean", "install", "all")


@dataclass
class BuildFlags:
    """Compilers and flags for a build."""

    cc: str
    cxx: str
    cflags: str
    cxxflags: str
    ldflags: str
    exec_suffix: str


def env_is(environ: Mapping[str, str], name: str, target: str) -> bool:
    """True if the variable name is set to exactly target."""
    return environ.get(name) == target


def compose_flags(environ: Mapping[str, str]) -> BuildFlags:
    """Compose compiler and linker flags from the WITH_* and flag variables."""
    cxxflags = environ.get("CXXFLAGS", "") + _BASE_CXXFLAGS
    cflags = environ.get("CFLAGS", "")
    ldflags = environ.get("LDFLAGS", "") + " uSockets/*.o"

    if not env_is(environ, "WITH_LTO", "0"):
        cxxflags += " -flto"

    if not env_is(environ, "WITH_ZLIB", "0"):
        ldflags += " -lz"
    else:
        cxxflags += " -DUWS_NO_ZLIB"

    if env_is(environ, "WITH_PROXY", "1"):
        cxxflags += " -DUWS_WITH_PROXY"

    if env_is(environ, "WITH_QUIC", "1"):
        cxxflags += " -DLIBUS_USE_QUIC"
        ldflags += " -pthread -lz -lm uSockets/lsquic/src/liblsquic/liblsquic.a"

    if env_is(environ, "WITH_BORINGSSL", "1"):
        cflags += " -I uSockets/boringssl/include -pthread -DLIBUS_USE_OPENSSL"
        ldflags += " -pthread uSockets/boringssl/build/ssl/libssl.a uSockets/boringssl/build/crypto/libcrypto.a"
    elif env_is(environ, "WITH_OPENSSL", "1"):
        ldflags += " -lssl -lcrypto"
    elif env_is(environ, "WITH_WOLFSSL", "1"):
        ldflags += " -L/usr/local/lib -lwolfssl"

    if env_is(environ, "WITH_LIBUV", "1"):
        ldflags += " -luv"

    if env_is(environ, "WITH_ASIO", "1"):
        cxxflags += " -pthread"
        ldflags += " -lpthread"

    if env_is(environ, "WITH_ASAN", "1"):
        cxxflags += " -fsanitize=address -g"
        ldflags += " -lasan"

    return BuildFlags(
        cc=environ.get("CC") or "cc",
        cxx=environ.get("CXX") or "g++",
        cflags=cflags,
        cxxflags=cxxflags,
        ldflags=ldflags,
        exec_suffix=environ.get("EXEC_SUFFIX", ""),
    )


def run(command: str) -> int:
    """Echo and run a shell command, returning its exit status."""
    print(f"--> {command}\n")
    return subprocess.run(command, shell=True).returncode


def _example_command(flags: BuildFlags, example: str) -> str:
    return (
        f"{flags.cxx}{flags.cxxflags} examples/{example}.cpp {flags.ldflags}"
        f" -o {example}{flags.exec_suffix}"
    )


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Build the named target; returns the process exit status."""
    args = list(sys.argv[1:] if argv is None else argv)
    if not args:
        print("usage: build <examples|capi|clean|install|all>", file=sys.stderr)
        return 1
    target = args[0]
    flags = compose_flags(os.environ)

    if target == "examples":
        for example in EXAMPLE_FILES:
            if run(_example_command(flags, example)):
                return -1
    elif target in _PLACEHOLDER_TARGETS:
        print(f"{target} target does nothing yet")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())