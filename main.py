import os
import sys
import threading
import time
from pathlib import Path
from typing import Any, Dict

from hlsdl.download import build_parser, download_batch, normalize_args
from hlsdl.errors import DownloadError
from hlsdl.fetcher import Fetcher, build_headers
from hlsdl.playlist import read_in_file
from hlsdl.progress import start_progress_server


class BatchState:
    """Status of every entry of the in-file, served by the progress server."""

    def __init__(self, names):
        self.started = time.strftime("%Y-%m-%d %H:%M:%S")
        self.entries: Dict[str, str] = {name: "queued" for name in names}

    def snapshot(self) -> Dict[str, Any]:
        entries = dict(self.entries)
        return {
            "started": self.started,
            "total": len(entries),
            "done": sum(1 for s in entries.values() if s == "done"),
            "failed": sorted(n for n, s in entries.items() if s.startswith("failed")),
            "entries": entries,
        }


def main() -> None:
    parser = build_parser("Batch runner: download every playlist listed in a 'name,url' CSV file")
    parser.add_argument("--out-dir", default="downloads", help="Directory for the joined files (default: downloads)")
    parser.add_argument("--serve-progress", action="store_true", help="Serve batch progress JSON on $PORT (default 5000)")
    args = parser.parse_args()
    if not args.in_file:
        parser.error("-i/--in-file is required")
    normalize_args(args)

    try:
        entries = read_in_file(args.in_file)
    except DownloadError as e:
        print(f"❌ {e}", file=sys.stderr)
        sys.exit(1)
    if not entries:
        print("No entries found in input file")
        return

    state = BatchState(name for name, _ in entries)
    if args.serve_progress:
        port = int(os.environ.get("PORT", "5000"))
        server_thread = threading.Thread(
            target=start_progress_server,
            args=(state.snapshot, "0.0.0.0", port),
            daemon=True,
        )
        server_thread.start()
        print(f"🌐 Progress web link: http://127.0.0.1:{port}/")

    out_dir = Path(args.out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)
    headers = build_headers(args.user_agent, args.referer, args.header)
    fetcher = Fetcher(args.timeout, args.proxy, backoff=args.backoff)
    try:
        failed = download_batch(entries, args, headers, fetcher, out_dir, keep_going=True, state=state.entries)
    finally:
        fetcher.close()

    print(f"✅ {len(entries) - len(failed)}/{len(entries)} downloaded to {out_dir}")
    if failed:
        print(f"❌ Failed: {', '.join(failed)}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
