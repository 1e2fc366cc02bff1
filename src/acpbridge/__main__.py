"""Entry point for running acpbridge as an ACP agent.

Usage:
    python -m acpbridge [--debug] [--log-file PATH] [--verbose N] [--audit-dir PATH]

This starts the ACP agent listening on stdin/stdout for JSON-RPC
messages from an ACP client (Zed, Rider, etc.) and forwards each prompt
to an upstream Claude agent session.
"""

from __future__ import annotations

import argparse
from typing import Any

from acpbridge.logging import get_logger, setup_logging

log = get_logger()


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="acpbridge",
        description="Bridge ACP clients to an upstream Claude agent session.",
    )
    parser.add_argument("--debug", action="store_true", help="log debug output to stderr")
    parser.add_argument("--log-file", metavar="PATH", help="append logs to PATH")
    parser.add_argument(
        "--verbose",
        type=int,
        choices=range(5),
        metavar="N",
        help="verbosity 0 (errors) .. 4 (trace)",
    )
    parser.add_argument(
        "--audit-dir", metavar="PATH", help="write per-session audit records to PATH"
    )
    return parser.parse_args(argv)


def cli_overrides(args: argparse.Namespace) -> dict[str, Any]:
    """Translate command-line flags into a config override dict."""
    overrides: dict[str, Any] = {}
    logging_section: dict[str, Any] = {}
    if args.debug:
        logging_section["debug"] = True
    if args.log_file:
        logging_section["file"] = args.log_file
    if args.verbose is not None:
        logging_section["verbose"] = args.verbose
    if logging_section:
        overrides["logging"] = logging_section
    if args.audit_dir:
        overrides["audit"] = {"enabled": True, "dir": args.audit_dir}
    return overrides


async def _main() -> None:
    """Async entry point with proper cleanup."""
    import asyncio
    import json

    from acp.agent.connection import AgentSideConnection
    from acp.connection import StreamDirection, StreamEvent
    from acp.stdio import stdio_streams

    from acpbridge.transport.acp.agent import create_agent

    log.info("Creating agent...")
    agent = create_agent()

    def log_message(event: StreamEvent) -> None:
        """Log all ACP messages for debugging."""
        direction = "RECV" if event.direction == StreamDirection.INCOMING else "SEND"
        method = event.message.get("method", "response")
        msg_id = event.message.get("id", "-")
        msg_str = json.dumps(event.message, default=str)

        if method == "response":
            # ACP uses camelCase "stopReason" in JSON
            result = event.message.get("result", {})
            stop_reason = (
                result.get("stopReason", "n/a") if isinstance(result, dict) else "n/a"
            )
            error = event.message.get("error")
            if error:
                log.debug("%s response (id=%s) ERROR: %s", direction, msg_id, error)
            else:
                log.debug(
                    "%s response (id=%s) stop_reason=%s len=%d",
                    direction, msg_id, stop_reason, len(msg_str)
                )
        elif method == "session/update":
            update = event.message.get("params", {}).get("update", {})
            log.debug(
                "%s %s type=%s len=%d",
                direction, method, update.get("sessionUpdate", "unknown"), len(msg_str)
            )
        else:
            preview = msg_str[:200] + "..." if len(msg_str) > 200 else msg_str
            log.debug("%s %s (id=%s) %s", direction, method, msg_id, preview)

    log.info("Setting up stdio connection...")
    output_stream, input_stream = await stdio_streams()
    conn = AgentSideConnection(
        agent,
        input_stream,
        output_stream,
        listening=False,
        use_unstable_protocol=True,
    )

    # Add message observer for logging
    conn._conn.add_observer(log_message)

    log.info("Ready to accept ACP requests")

    try:
        await conn.listen()
    except (BrokenPipeError, ConnectionResetError):
        log.info("Pipe closed, shutting down...")
    finally:
        log.info("Connection closed, cleaning up...")
        try:
            await asyncio.wait_for(agent.shutdown(), timeout=5.0)
        except asyncio.TimeoutError:
            log.warning("Session shutdown timed out")
        try:
            await asyncio.wait_for(conn.close(), timeout=2.0)
        except asyncio.TimeoutError:
            log.warning("Connection close timed out, forcing exit")
        except Exception as e:
            log.warning("Error during cleanup: %s", e)


def main(argv: list[str] | None = None) -> None:
    """Run the acpbridge ACP agent."""
    import asyncio

    from acpbridge.config import load_config, set_cli_overrides

    args = parse_args(argv)
    set_cli_overrides(cli_overrides(args))

    # Load config before logging so we can use config.logging settings
    config = load_config()
    setup_logging(config.logging)

    log.info(
        "Starting acpbridge (model=%s, audit=%s)",
        config.upstream.model or "default",
        config.audit.dir if config.audit.enabled else "off",
    )

    try:
        asyncio.run(_main())
    except KeyboardInterrupt:
        log.info("Interrupted")
    finally:
        log.info("Exiting...")


if __name__ == "__main__":
    main()
