import argparse
import sys
import threading
from pathlib import Path
from typing import Callable, Dict, List, NamedTuple, Optional, Sequence, Tuple, Union

from hlsdl.decrypter import decrypt
from hlsdl.errors import DownloadError, SegmentError
from hlsdl.fetcher import DEFAULT_TIMEOUT, DEFAULT_UA, Fetcher, build_headers
from hlsdl.joiner import Joiner
from hlsdl.keys import KeyCache, KeyRef, resolve_iv
from hlsdl.playlist import Segment, filename_from_uri, load_playlist, read_in_file
from hlsdl.pool import DEFAULT_WORKERS, WorkerPool
from hlsdl.progress import Progress, ProgressPrinter


DEFAULT_RETRIES = 3

ProgressCallback = Callable[..., None]


class Task(NamedTuple):
    index: int
    segment: Segment
    default_key: Optional[KeyRef]
    joiner: Joiner


def effective_key(segment: Segment, default_key: Optional[KeyRef]) -> Optional[KeyRef]:
    if segment.key is not None and segment.key.uri:
        return segment.key
    if default_key is not None and default_key.uri:
        return default_key
    return None


def process_segment(task: Task, fetcher: Fetcher, keys: KeyCache, headers: Optional[Dict[str, str]] = None,
                    retries: int = 0, progress: Optional[ProgressCallback] = None) -> None:
    """Fetch, decrypt if needed and hand one segment to the joiner."""
    segment = task.segment
    try:
        data = fetcher.fetch(segment.uri, headers, retries)
        key = effective_key(segment, task.default_key)
        if key is not None:
            data = decrypt(data, keys.get_key(key.uri), resolve_iv(key, task.index))
    except DownloadError as e:
        if progress:
            progress(task.index, segment.uri, 0, e)
        raise SegmentError(task.index, segment.uri, e) from e
    if progress:
        progress(task.index, segment.uri, len(data))
    task.joiner.join(task.index, data)


def run_download(segments: Sequence[Segment], default_key: Optional[KeyRef], output: Union[str, Path],
                 workers: int = DEFAULT_WORKERS, retries: int = DEFAULT_RETRIES, fetcher: Optional[Fetcher] = None,
                 headers: Optional[Dict[str, str]] = None, progress: Optional[ProgressCallback] = None) -> Path:
    """Download ``segments`` with ``workers`` threads and join them into ``output``.

    The first segment that fails aborts the job: no new segment is started,
    in-flight ones are waited for, the partial output is deleted and the
    SegmentError is raised.
    """
    if workers <= 0:
        workers = DEFAULT_WORKERS
    retries = max(retries, 0)
    fetcher = fetcher or Fetcher()
    keys = KeyCache(fetcher, headers, retries)
    joiner = Joiner(output)

    def handle(task: Task) -> None:
        process_segment(task, fetcher, keys, headers, retries, progress)

    def on_error(task: Task, exc: BaseException) -> None:
        joiner.fail(exc)

    pool = WorkerPool(workers, handle, on_error)

    def produce() -> None:
        try:
            for index, segment in enumerate(segments):
                if not pool.push(Task(index, segment, default_key, joiner)):
                    break
        finally:
            pool.close_queue()

    pool.start()
    producer = threading.Thread(target=produce, name="hlsdl-producer", daemon=True)
    producer.start()
    try:
        joiner.run(len(segments))
    except BaseException:
        pool.cancel()
        raise
    finally:
        producer.join()
        pool.join()
    return joiner.path


def normalize_args(args: argparse.Namespace) -> argparse.Namespace:
    if args.thread_number <= 0:
        args.thread_number = DEFAULT_WORKERS
    if args.retry <= 0:
        args.retry = 1
    if args.timeout <= 0:
        args.timeout = DEFAULT_TIMEOUT
    return args


def download_playlist(url: Optional[str], m3u8_file: Optional[str], out_file: Optional[str],
                      args: argparse.Namespace, headers: Dict[str, str], fetcher: Fetcher) -> Optional[Path]:
    playlist = load_playlist(url, m3u8_file, fetcher, headers, args.retry)
    print("Parse m3u8 file succeed")
    if not playlist.segments:
        print("No segments found in playlist", file=sys.stderr)
        return None

    output = Path(out_file or filename_from_uri(playlist.segments[0].uri) or "output.ts")
    print(f"Will save to {output}")
    print(f"Found {len(playlist.segments)} segments in playlist")

    progress = Progress(len(playlist.segments), quiet=args.quiet)
    printer = ProgressPrinter(progress) if args.quiet else None
    if printer:
        printer.start()
    try:
        path = run_download(playlist.segments, playlist.default_key, output, args.thread_number, args.retry,
                            fetcher, headers, progress)
    finally:
        if printer:
            printer.stop()
    print(f"Download succeed, saved to {path}")
    return path


def download_batch(entries: List[Tuple[str, str]], args: argparse.Namespace, headers: Dict[str, str],
                   fetcher: Fetcher, out_dir: Optional[Path] = None, keep_going: bool = False,
                   state: Optional[Dict[str, str]] = None) -> List[str]:
    """Download each (name, url) entry; returns the names that failed."""
    failed: List[str] = []
    for name, url in entries:
        target = out_dir / name if out_dir else Path(name)
        if state is not None:
            state[name] = "downloading"
        try:
            download_playlist(url, None, str(target), args, headers, fetcher)
        except DownloadError as e:
            print(f"Failed {name}: {e}", file=sys.stderr)
            failed.append(name)
            if state is not None:
                state[name] = f"failed: {e}"
            if not keep_going:
                break
            continue
        if state is not None:
            state[name] = "done"
    return failed


def build_parser(description: str = "Download a HLS media playlist into one file") -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description=description)
    parser.add_argument("-u", "--url", help="url of m3u8 file")
    parser.add_argument("-f", "--m3u8-file", help="local m3u8 file")
    parser.add_argument("-i", "--in-file", help="CSV file with 'name,url' rows to download in turn")
    parser.add_argument("-o", "--out-file", default="", help="Output path (default: file name of the first segment)")
    parser.add_argument("-n", "--thread-number", type=int, default=DEFAULT_WORKERS, help="Parallel downloads (default: 10)")
    parser.add_argument("-r", "--retry", type=int, default=DEFAULT_RETRIES, help="Per-request retry count (default: 3)")
    parser.add_argument("-t", "--timeout", type=float, default=DEFAULT_TIMEOUT, help="HTTP timeout seconds (default: 30)")
    parser.add_argument("-p", "--proxy", default=None, help="Proxy, e.g. http://127.0.0.1:8080")
    parser.add_argument("-H", "--header", action="append", default=[], help="Extra header as 'Key: Value' (repeatable)")
    parser.add_argument("--referer", default=None, help="Referer header value to send")
    parser.add_argument("--user-agent", default=DEFAULT_UA, help="User-Agent header (default: modern Chrome)")
    parser.add_argument("--backoff", type=float, default=0.0, help="Base delay in seconds between retries (default: 0)")
    parser.add_argument("-q", "--quiet", action="store_true", help="Show a progress line instead of one line per segment")
    return parser


def main(argv: Optional[List[str]] = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not (args.url or args.m3u8_file or args.in_file):
        parser.error("you must set the -u, -f or -i parameter")
    normalize_args(args)

    headers = build_headers(args.user_agent, args.referer, args.header)
    fetcher = Fetcher(args.timeout, args.proxy, backoff=args.backoff)
    try:
        if args.in_file:
            if download_batch(read_in_file(args.in_file), args, headers, fetcher):
                sys.exit(1)
            return
        download_playlist(args.url, args.m3u8_file, args.out_file, args, headers, fetcher)
    except DownloadError as e:
        print(f"Download failed: {e}", file=sys.stderr)
        sys.exit(1)
    finally:
        fetcher.close()


if __name__ == "__main__":
    main()
