#!/usr/bin/env python3
"""
HTTP server with graceful restart.

The master opens the listening sockets and supervises workers; each worker
serves HTTP on the inherited sockets with http.server. Send SIGHUP to the
master to start a new worker generation: the new worker takes over and the
old one finishes its in-flight requests before it exits.

Usage:
    python examples/graceserver.py --addr :8080 --addr :8081
    kill -HUP $(cat graceserver.pid)      # graceful restart
    kill -TERM $(cat graceserver.pid)     # stop

Options:
    --handle-delay 2s     delay each response (watch a restart not drop it)
    --start-delay 1s      delay before the worker reports ready
    --config app.yaml     read "starter" and "logging" sections from YAML
"""

import argparse
import http.server
import os
import pathlib
import signal
import socket
import socketserver
import sys
import threading
import time

# Add the project root to the path
project_root = str(pathlib.Path(__file__).resolve().parents[1])
sys.path.append(project_root) if project_root not in sys.path else None

from serverstarter import Starter, StarterError
from serverstarter.duration import to_secs
from serverstarter.log import LogConfig, Logger, LoggerFactory


def parse_addr(value: str) -> tuple[str, int]:
    host, _, port = value.rpartition(":")
    try:
        return host, int(port)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid listen address: {value}") from None


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[1])
    parser.add_argument(
        "--addr",
        action="append",
        type=parse_addr,
        help="listen address (repeatable, default :8080)",
    )
    parser.add_argument("--pidfile", default="graceserver.pid", help="master pid file")
    parser.add_argument("--fdenv", default="LISTEN_FDS", help="listener count variable")
    parser.add_argument("--handle-delay", type=to_secs, default=0.0)
    parser.add_argument("--start-delay", type=to_secs, default=0.0)
    parser.add_argument("--shutdown-timeout", default="1m")
    parser.add_argument("--config", help="YAML file with starter and logging sections")
    parser.add_argument("-l", "--log-level", default="info")
    return parser.parse_args()


class DelayedHandler(http.server.BaseHTTPRequestHandler):
    """Answers every GET with the serving worker's pid."""

    server: "InheritedHTTPServer"

    def do_GET(self) -> None:
        delay = self.server.handle_delay
        if delay > 0:
            time.sleep(delay)
            body = f"from pid {os.getpid()} after {delay}s delay.\n"
        else:
            body = f"from pid {os.getpid()}.\n"

        data = body.encode()
        self.send_response(200)
        self.send_header("Content-Type", "text/plain; charset=utf-8")
        self.send_header("Content-Length", str(len(data)))
        self.end_headers()
        self.wfile.write(data)

    def log_message(self, format: str, *args) -> None:
        self.server.lg.debug(
            "request", extra={"client": self.client_address[0], "line": format % args}
        )


class InheritedHTTPServer(socketserver.ThreadingMixIn, http.server.HTTPServer):
    """HTTP server on an already bound and listening socket."""

    # server_close() waits for in-flight requests
    block_on_close = True

    def __init__(self, sock: socket.socket, lg: Logger, handle_delay: float) -> None:
        self.address_family = sock.family
        super().__init__(
            sock.getsockname()[:2], DelayedHandler, bind_and_activate=False
        )
        self.socket.close()
        self.socket = sock
        self.server_address = sock.getsockname()
        self.lg = lg
        self.handle_delay = handle_delay


def run_master(starter: Starter, args: argparse.Namespace, lg: Logger) -> int:
    lg.info("master started", extra={"pid": os.getpid()})
    if args.pidfile:
        pathlib.Path(args.pidfile).write_text(str(os.getpid()))

    listeners = []
    for host, port in args.addr or [("", 8080)]:
        try:
            listeners.append(socket.create_server((host, port)))
        except OSError as e:
            lg.error("failed to listen", extra={"port": port, "exception": e})
            return 1

    try:
        starter.run_master(*listeners)
    except StarterError as e:
        lg.error("master failed", extra={"exception": e})
        return 1
    return 0


def run_worker(starter: Starter, args: argparse.Namespace, lg: Logger) -> int:
    servers = [
        InheritedHTTPServer(sock, lg, args.handle_delay) for sock in starter.listeners()
    ]

    stop = threading.Event()
    signal.signal(signal.SIGTERM, lambda signum, frame: stop.set())
    # Ctrl-C reaches the whole process group; the master stops us with SIGTERM
    signal.signal(signal.SIGINT, signal.SIG_IGN)

    if args.start_delay > 0:
        time.sleep(args.start_delay)

    threads = []
    for server in servers:
        t = threading.Thread(target=server.serve_forever, daemon=True)
        t.start()
        threads.append(t)
        lg.info("serving", extra={"address": server.server_address})

    starter.send_ready()
    stop.wait()

    lg.info("shutting down")
    for server in servers:
        server.shutdown()
        server.server_close()
    for t in threads:
        t.join()
    lg.info("exiting", extra={"pid": os.getpid()})
    return 0


def main() -> int:
    args = parse_args()
    if args.config:
        starter = Starter.from_yaml(args.config)
    else:
        lg = LoggerFactory.create_root(LogConfig.from_params(args.log_level))
        starter = Starter(
            lg=lg, env_name=args.fdenv, shutdown_timeout=args.shutdown_timeout
        )

    lg = LoggerFactory.derive(starter.lg, "graceserver")
    if starter.is_master():
        return run_master(starter, args, lg)
    return run_worker(starter, args, lg)


if __name__ == "__main__":
    sys.exit(main())
