#!/usr/bin/env python3
"""Main entry point for sshp."""

from __future__ import annotations

import argparse
import asyncio
import os
import shlex
import sys
import time
import uuid
from pathlib import Path
from typing import TextIO

from . import __version__
from .aggregator import RunResult
from .coalescer import DeliveryPolicy, GroupOrder
from .config import COLOR_CHOICES, RunConfig, default_config_path, load_defaults
from .dashboard import Dashboard
from .errors import (
    EXIT_INTERRUPTED,
    EXIT_RUNTIME,
    EXIT_SUCCESS,
    ConfigError,
    RunCancelled,
    SshpError,
)
from .executor import Executor
from .hosts import load_hosts, parse_port
from .logger import bind_context, clear_context, get_logger, setup_logging
from .output import FileSink, TerminalSink
from .render import PROG_NAME, Renderer
from .session import Session
from .signals import install_signal_handlers
from .ssh import CommandBuilder, SshOptions, exec_builder

logger = get_logger(__name__)


def _port(value: str) -> int:
    try:
        return parse_port(value, "`-p`")
    except ConfigError as e:
        raise argparse.ArgumentTypeError(str(e)) from None


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog=PROG_NAME,
        description="Run a command on many hosts over ssh, in parallel",
    )
    parser.add_argument("-f", "--file", help="File of hosts, one per line (default: stdin)")
    parser.add_argument(
        "-m", "--max-jobs", type=int, help="Maximum number of concurrent sessions (default 50)"
    )
    parser.add_argument("-u", "-l", "--user", "--login", dest="user", help="Default remote user")
    parser.add_argument("-p", "--port", type=_port, help="Default ssh port")
    parser.add_argument("-i", "--identity", type=Path, help="ssh identity file")
    parser.add_argument(
        "-O",
        "--ssh-option",
        action="append",
        default=[],
        metavar="OPT",
        help="Option passed to ssh as `-o OPT` (repeatable)",
    )
    parser.add_argument("-q", "--quiet", action="store_true", help="Run ssh in quiet mode")
    parser.add_argument(
        "-x", "--exec", dest="exec_program", metavar="PROGRAM",
        help="Run PROGRAM instead of ssh, called as `PROGRAM host command...`",
    )
    parser.add_argument("-g", "--group", action="store_true", help="Group output per host")
    parser.add_argument(
        "--group-order",
        choices=[o.value for o in GroupOrder],
        default=GroupOrder.ADMISSION.value,
        help="Order of grouped blocks (default: admission)",
    )
    parser.add_argument(
        "-j", "--join", action="store_true", help="Print hosts with identical output together"
    )
    parser.add_argument(
        "-o", "--output-dir", type=Path, help="Write each host's output to files in this directory"
    )
    parser.add_argument("-s", "--silent", action="store_true", help="Suppress host output")
    parser.add_argument("-t", "--timeout", type=float, help="Per-host timeout in seconds")
    parser.add_argument(
        "-a", "--anonymous", action="store_true", help="Hide the host name in output"
    )
    parser.add_argument(
        "-e", "--exit-codes", action="store_true", help="Print each host's exit code"
    )
    parser.add_argument("-c", "--color", choices=COLOR_CHOICES, help="Colorize output")
    parser.add_argument("--trim", action="store_true", help="Trim domains from host names")
    parser.add_argument("-d", "--debug", action="store_true", help="Debug logging on stderr")
    parser.add_argument(
        "-n", "--dry-run", action="store_true", help="Print what would run, run nothing"
    )
    parser.add_argument("--max-line-length", type=int, help="Split lines longer than this")
    parser.add_argument(
        "--max-output-length", type=int, help="Per-host output cap in join mode"
    )
    parser.add_argument("--config", type=Path, help="YAML file with default values")
    parser.add_argument("--dashboard", action="store_true", help="Run with the TUI dashboard")
    parser.add_argument(
        "-v", "--version", action="version", version=f"%(prog)s {__version__}"
    )
    parser.add_argument("command", nargs=argparse.REMAINDER, help="Command to run")
    return parser


def build_config(args: argparse.Namespace, stdin: TextIO | None = None) -> RunConfig:
    """Merge YAML defaults and flags, validate, then read the host list."""
    defaults = load_defaults(args.config or default_config_path())

    command = list(args.command)
    if command and command[0] == "--":
        command = command[1:]

    exec_program = None
    if args.exec_program is not None:
        exec_program = shlex.split(args.exec_program)
        if not exec_program:
            raise ConfigError("invalid value for `-x`: empty program")

    color = args.color or defaults.color
    config = RunConfig(
        hosts=[],
        command=command,
        ssh=SshOptions(
            binary=defaults.ssh_binary,
            identity=args.identity or defaults.identity,
            login=args.user or defaults.user,
            port=args.port or defaults.port,
            quiet=args.quiet or defaults.quiet,
            options=[*defaults.ssh_options, *args.ssh_option],
        ),
        exec_program=exec_program,
        max_jobs=args.max_jobs if args.max_jobs is not None else defaults.max_jobs,
        timeout=args.timeout if args.timeout is not None else defaults.timeout,
        policy=DeliveryPolicy.GROUP if args.group else DeliveryPolicy.STREAM,
        group_order=GroupOrder(args.group_order),
        join=args.join,
        output_dir=args.output_dir,
        silent=args.silent,
        anonymous=args.anonymous,
        exit_codes=args.exit_codes,
        color=color == "on" or (color == "auto" and sys.stdout.isatty()),
        trim=args.trim,
        debug=args.debug,
        dry_run=args.dry_run,
        dashboard=args.dashboard,
        max_line_length=(
            args.max_line_length
            if args.max_line_length is not None
            else defaults.max_line_length
        ),
        max_output_length=(
            args.max_output_length
            if args.max_output_length is not None
            else defaults.max_output_length
        ),
        kill_grace=defaults.kill_grace,
    )
    config.validate()
    config.hosts = load_hosts(args.file, stdin=stdin)
    return config


def command_builder(config: RunConfig) -> CommandBuilder:
    if config.exec_program is not None:
        return exec_builder(config.exec_program, config.command)
    return config.ssh.builder(config.command)


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = build_config(args)
    except ConfigError as e:
        print(f"{PROG_NAME}: {e}", file=sys.stderr)
        return e.exit_code

    setup_logging("DEBUG" if config.debug else "WARNING")
    bind_context(run_id=uuid.uuid4().hex[:8])
    try:
        return _run(config)
    finally:
        clear_context()


def _run(config: RunConfig) -> int:
    build_command = command_builder(config)
    logger.debug(
        "config_loaded",
        hosts=[h.label for h in config.hosts],
        command=config.command,
        max_jobs=config.max_jobs,
        policy=config.policy.value,
        join=config.join,
    )

    if config.dry_run:
        print("(dry run)")
        for host in config.hosts:
            print(shlex.join(build_command(host)))
        return EXIT_SUCCESS

    if not config.hosts:
        return EXIT_SUCCESS

    try:
        file_sink = FileSink(config.output_dir) if config.output_dir else None
    except ConfigError as e:
        print(f"{PROG_NAME}: {e}", file=sys.stderr)
        return e.exit_code

    renderer = Renderer(color=config.color, anonymous=config.anonymous, trim=config.trim)
    started = time.monotonic()

    if config.dashboard:
        code = _run_dashboard(config, build_command, file_sink, renderer)
    else:
        code = _run_headless(config, build_command, file_sink, renderer)

    logger.debug("finished", elapsed_ms=int((time.monotonic() - started) * 1000))
    return code


def _run_headless(
    config: RunConfig,
    build_command: CommandBuilder,
    file_sink: FileSink | None,
    renderer: Renderer,
) -> int:
    """Run executor without TUI dashboard."""
    grouped = config.join or config.policy is DeliveryPolicy.GROUP
    terminal = TerminalSink(
        renderer,
        silent=config.silent,
        exit_codes=config.exit_codes,
        join=config.join,
        max_output_length=config.max_output_length,
        total=len(config.hosts),
    )

    def on_finish(session: Session) -> None:
        if file_sink:
            file_sink.finish(session)
        terminal.finish(session, grouped=grouped)

    executor = Executor(
        build_command,
        config.max_jobs,
        timeout=config.timeout,
        # Join mode groups whole outputs as soon as each host completes
        policy=DeliveryPolicy.GROUP if grouped else DeliveryPolicy.STREAM,
        group_order=GroupOrder.COMPLETION if config.join else config.group_order,
        max_line_length=config.max_line_length,
        kill_grace=config.kill_grace,
        merge_stderr=config.join,
        on_record=file_sink.record if file_sink else None,
        on_output=terminal.output,
        on_block=terminal.block,
        on_finish=on_finish,
    )

    async def run() -> RunResult:
        remove_handlers = install_signal_handlers(
            asyncio.get_running_loop(), executor, renderer
        )
        try:
            return await executor.run(config.hosts)
        finally:
            remove_handlers()

    terminal.start()
    try:
        result = asyncio.run(run())
    except RunCancelled as e:
        print(f"\n{PROG_NAME}: {e} ({len(e.partial)}/{len(config.hosts)} hosts finished)",
              file=sys.stderr)
        return e.exit_code
    except SshpError as e:
        print(f"{PROG_NAME}: {e}", file=sys.stderr)
        return e.exit_code
    except BrokenPipeError:
        # Reader went away (e.g. `| head`); don't complain again at exit
        devnull = os.open(os.devnull, os.O_WRONLY)
        os.dup2(devnull, sys.stdout.fileno())
        return EXIT_RUNTIME

    terminal.close(result)
    sys.stderr.write(renderer.failures(result))
    return result.exit_code


def _run_dashboard(
    config: RunConfig,
    build_command: CommandBuilder,
    file_sink: FileSink | None,
    renderer: Renderer,
) -> int:
    """Run with the dashboard, then report like the headless run."""
    app = Dashboard(config, build_command, file_sink)
    app.run()
    return _dashboard_exit_code(app, renderer)


def _dashboard_exit_code(app: Dashboard, renderer: Renderer) -> int:
    """Report a finished dashboard run on stderr and pick the exit code."""
    error = app.error
    if isinstance(error, SshpError):
        print(f"{PROG_NAME}: {error}", file=sys.stderr)
        return error.exit_code
    if error is not None:
        print(f"{PROG_NAME}: unexpected error: {error!r}", file=sys.stderr)
        return EXIT_RUNTIME
    if app.result is None:
        return EXIT_INTERRUPTED

    sys.stderr.write(renderer.failures(app.result))
    return app.result.exit_code


if __name__ == "__main__":
    sys.exit(main())
