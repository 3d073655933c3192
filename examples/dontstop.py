#!/usr/bin/env python3
"""
Worker that ignores SIGTERM.

Demonstrates the forced kill on reload: after SIGHUP the master starts a new
worker, sends SIGTERM to the old one, and kills it with SIGKILL once the
shutdown timeout (10s here) expires.

Usage:
    python examples/dontstop.py --addr :8080
    kill -HUP <master pid>
"""

import argparse
import http.server
import os
import pathlib
import signal
import socket
import sys
import time

# Add the project root to the path
project_root = str(pathlib.Path(__file__).resolve().parents[1])
sys.path.append(project_root) if project_root not in sys.path else None

from serverstarter import Starter, StarterError
from serverstarter.duration import to_secs
from serverstarter.log import LoggerFactory


class PidHandler(http.server.BaseHTTPRequestHandler):
    handle_delay = 0.0

    def do_GET(self) -> None:
        if self.handle_delay > 0:
            time.sleep(self.handle_delay)
        data = f"response from pid {os.getpid()}.\n".encode()
        self.send_response(200)
        self.send_header("Content-Length", str(len(data)))
        self.end_headers()
        self.wfile.write(data)


def main() -> int:
    parser = argparse.ArgumentParser(description="worker ignoring SIGTERM")
    parser.add_argument("--addr", default=":8080")
    parser.add_argument("--start-delay", type=to_secs, default=0.0)
    parser.add_argument("--handle-delay", type=to_secs, default=0.0)
    args = parser.parse_args()

    starter = Starter(shutdown_timeout="10s")
    lg = LoggerFactory.derive(starter.lg, "dontstop")

    if starter.is_master():
        host, _, port = args.addr.rpartition(":")
        sock = socket.create_server((host, int(port)))
        lg.info("master started", extra={"pid": os.getpid()})
        try:
            starter.run_master(sock)
        except StarterError as e:
            lg.error("master failed", extra={"exception": e})
            return 1
        return 0

    (sock,) = starter.listeners()
    signal.signal(signal.SIGTERM, lambda signum, frame: lg.info("ignoring SIGTERM"))
    signal.signal(signal.SIGINT, signal.SIG_IGN)

    PidHandler.handle_delay = args.handle_delay
    server = http.server.ThreadingHTTPServer(
        sock.getsockname()[:2], PidHandler, bind_and_activate=False
    )
    server.socket.close()
    server.socket = sock

    if args.start_delay > 0:
        time.sleep(args.start_delay)
    starter.send_ready()
    lg.info("serving", extra={"pid": os.getpid()})
    server.serve_forever()
    return 0


if __name__ == "__main__":
    sys.exit(main())
