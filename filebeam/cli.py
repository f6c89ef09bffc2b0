import argparse
import sys

from filebeam import config
from filebeam.browsing.api_client import APIClient
from filebeam.browsing.navigation import NavigationStack
from filebeam.collaborators import AlbumGallery, ConsoleNotifier, DirectoryPermissions
from filebeam.errors import FileBeamError
from filebeam.logutil import enable_console, get_logger
from filebeam.notify import NotificationRelay
from filebeam.schemas import DirectoryEntry
from filebeam.shell import BrowseShell, format_listing
from filebeam.transfers import xfer
from filebeam.transfers.manager import TransferManager, TransferOpts
from filebeam.transfers.protocols.http import HttpProtocol
from filebeam.transfers.state import StateStore
from filebeam.utils import echo, brightgreen, brightred

logger = get_logger("cli")


def parse_cli_args(argv=None):
    p = argparse.ArgumentParser(
        prog="filebeam",
        description="Browse a paired file server and download files with live progress.",
    )
    p.add_argument("--timeout", type=float, default=config.REQUEST_TIMEOUT,
                   help=f"Seconds before a stalled request fails. Default: {config.REQUEST_TIMEOUT:g}")
    p.add_argument("-d", "--download-dir", default=config.DOWNLOAD_DIR,
                   help=f"Where downloads are written. Default: {config.DOWNLOAD_DIR}")
    p.add_argument("-c", "--concurrency", type=int, default=config.MAX_CONCURRENT,
                   help=f"Parallel downloads. Default: {config.MAX_CONCURRENT}")
    p.add_argument("--state-dir", default=config.STATE_DIR,
                   help=f"Transfer records. Default: {config.STATE_DIR}")
    p.add_argument("--no-gallery", action="store_true",
                   help="Do not copy finished downloads into the gallery album.")
    p.add_argument("-v", "--verbose", action="store_true",
                   help=f"Also print the log to stderr (always written to {config.LOG_PATH}).")
    sub = p.add_subparsers(dest="command", required=True)

    s = sub.add_parser("connect", help="Pair with a server (the host:port from its code)")
    s.add_argument("address")

    s = sub.add_parser("ls", help="List a folder on the server")
    s.add_argument("address")
    s.add_argument("path", nargs="?", default="")

    s = sub.add_parser("get", help="Download files by server path")
    s.add_argument("address")
    s.add_argument("paths", nargs="+")

    s = sub.add_parser("browse", help="Interactive browser")
    s.add_argument("address")

    sub.add_parser("transfers", help="Show recorded transfers")

    s = sub.add_parser("serve", help="Run the reference file server")
    s.add_argument("--root", default=None, help="Folder to serve (default: BEAM_ROOT or home)")
    s.add_argument("--host", default=None)
    s.add_argument("--port", type=int, default=None)
    return p.parse_args(argv)


def build_manager(args, client: APIClient) -> TransferManager:
    opts = TransferOpts(
        download_dir=args.download_dir,
        max_concurrent=max(1, args.concurrency),
        timeout=args.timeout,
    )
    return TransferManager(
        HttpProtocol(client),
        store=StateStore(args.state_dir),
        permissions=DirectoryPermissions(args.download_dir),
        gallery=None if args.no_gallery else AlbumGallery(),
        opts=opts,
    )


def _file_entry(path: str) -> DirectoryEntry:
    path = path.strip("/")
    return DirectoryEntry(name=path.rsplit("/", 1)[-1], is_dir=False, path=path)


def cmd_get(manager: TransferManager, paths) -> int:
    tids = [manager.start_download(_file_entry(p)) for p in paths]
    failed = 0
    for tid in tids:
        task = manager.wait(tid)
        if task is None or task.status != "completed":
            failed += 1
            echo(f"[!] {task.name if task else tid}: {task.error if task else 'lost'}", color=brightred)
        else:
            echo(f"[+] {task.local_path} ({xfer.fmt_progress(task.to_dict()).strip()})", color=brightgreen)
    return 1 if failed else 0


def main(argv=None) -> int:
    args = parse_cli_args(argv)
    if args.verbose:
        enable_console()

    if args.command == "serve":
        from BeamServer.main import run
        run(args.root, args.host, args.port)
        return 0

    if args.command == "transfers":
        rows = [t.to_dict() for t in StateStore(args.state_dir).load_all()]
        xfer.cmd_list(rows)
        return 0

    try:
        client = APIClient.from_address(args.address, timeout=args.timeout)
        if args.command == "connect":
            echo(f"[+] Connected to {client.base_url}: {client.connect()}", color=brightgreen)
            return 0
        if args.command == "ls":
            echo(format_listing(client.list_dir(args.path.strip("/"))))
            return 0

        manager = build_manager(args, client)
        relay = NotificationRelay(manager, ConsoleNotifier())
        try:
            if args.command == "get":
                return cmd_get(manager, args.paths)
            client.connect()
            BrowseShell(client, NavigationStack(client), manager).run()
            return 0
        finally:
            manager.shutdown()
            relay.close()
    except FileBeamError as e:
        logger.debug("command %s failed", args.command, exc_info=True)
        echo(f"[!] {e.__class__.__name__}: {e}", color=brightred)
        return 1
    except ValueError as e:
        echo(f"[!] {e}", color=brightred)
        return 2


if __name__ == "__main__":
    sys.exit(main())
