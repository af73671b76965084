from __future__ import annotations

import argparse
import sys
import time
from typing import BinaryIO, List, Optional, Union

from carpack.cid import format_cid, parse_cid
from carpack.constants import DEFAULT_CHUNK_SIZE, KIND_DIRECTORY
from carpack.errors import CarError, FormatError, IntegrityError
from carpack.hashutil import hash_archive
from carpack.walker import PathEntry, iter_cids, list_files, list_files_and_cids, list_roots, unpack
from carpack.writer import pack_to_file, pack_to_stream


def _archive_source(archive: Optional[str]) -> Union[str, BinaryIO]:
    """Path as given, or stdin's binary buffer for None / '-'."""
    if archive is None or archive == "-":
        return sys.stdin.buffer
    return archive


def cmd_pack(
    inputs: List[str],
    *,
    output: Optional[str] = None,
    wrap_with_directory: bool = True,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    verbose: bool = False,
) -> bool:
    """Pack files/directories into a .car archive.

    Args:
        inputs: File or directory paths to pack.
        output: Archive path; defaults to ``<first input name>.car`` in the
            current directory. ``-`` streams the archive to stdout.
        wrap_with_directory: Wrap all inputs in one directory (single root).
        chunk_size: Maximum leaf size in bytes.
        verbose: Print each path as it is packed.
    """
    to_stdout = output == "-"
    # Keep stdout clean for archive bytes when streaming
    info = sys.stderr if to_stdout else sys.stdout

    def _on_entry(path: str) -> None:
        print(f"  packing: {path}", file=info)

    on_entry = _on_entry if verbose else None
    if to_stdout:
        roots = pack_to_stream(
            inputs,
            sys.stdout.buffer,
            wrap_with_directory=wrap_with_directory,
            on_entry=on_entry,
            chunk_size=chunk_size,
        )
        filename = "<stdout>"
    else:
        roots, filename = pack_to_file(
            inputs,
            output,
            wrap_with_directory=wrap_with_directory,
            on_entry=on_entry,
            chunk_size=chunk_size,
        )
    for root in roots:
        print(f"root CID: {format_cid(root)}", file=info)
    print(f"  output: {filename}", file=info)
    return True


def cmd_unpack(
    archive: Optional[str],
    *,
    outdir: str = ".",
    roots: Optional[List[str]] = None,
    quiet: bool = False,
) -> bool:
    """Unpack an archive (or stdin) into a directory.

    Args:
        archive: Archive path; None or ``-`` reads from stdin.
        outdir: Destination directory (created if missing).
        roots: Root CIDs to unpack; defaults to every root in the header.
        quiet: Only print the summary.

    Returns:
        True when every selected root was reconstructed.
    """
    selected = [parse_cid(r) for r in (roots or [])]
    counts = {"files": 0, "dirs": 0, "bytes": 0}

    def _on_entry(entry: PathEntry) -> None:
        if entry.kind == KIND_DIRECTORY:
            counts["dirs"] += 1
            if not quiet:
                print(f"   creating: {entry.path}/")
        else:
            counts["files"] += 1
            counts["bytes"] += entry.size
            if not quiet:
                print(f" unpacking: {entry.path}")

    t0 = time.time()
    result = unpack(_archive_source(archive), selected or None, outdir, on_entry=_on_entry)
    for r in result.results:
        if r.ok:
            print(f"root {format_cid(r.root)}: OK ({len(r.entries)} entries)")
        else:
            print(f"root {format_cid(r.root)}: FAIL", file=sys.stderr)
            print(f"Error: {r.error}", file=sys.stderr)
    dt = max(0.000001, time.time() - t0)
    mib = counts["bytes"] / (1024.0 * 1024.0)
    ok_roots = len(result.results) - len(result.failed)
    print(
        f"Done: unpacked {counts['files']} files ({mib:.2f} MiB) in {dt:.1f}s; "
        f"{mib / dt:.2f} MiB/s; dirs={counts['dirs']}; roots ok={ok_roots} failed={len(result.failed)}"
    )
    return result.ok


def cmd_list(archive: str) -> bool:
    """Print the path of every file in the archive."""
    for entry in list_files(_archive_source(archive)):
        print(entry.path)
    return True


def cmd_list_full(archive: str) -> bool:
    """Print ``path<TAB>cid`` for every file in the archive."""
    for entry in list_files_and_cids(_archive_source(archive)):
        print(f"{entry.path}\t{entry.cid_str}")
    return True


def cmd_list_cids(archive: str) -> bool:
    """Print the CID of every block, in archive order."""
    for cid in iter_cids(_archive_source(archive)):
        print(format_cid(cid))
    return True


def cmd_list_roots(archive: str) -> bool:
    """Print the root CIDs declared in the header."""
    for cid in list_roots(_archive_source(archive)):
        print(format_cid(cid))
    return True


def cmd_hash(archive: str) -> bool:
    """Print the CID of the archive file itself."""
    print(format_cid(hash_archive(_archive_source(archive))))
    return True


def main(argv: List[str] | None = None):
    ap = argparse.ArgumentParser(
        prog="carpack",
        description="Pack files into content-addressed archives (.car) and unpack them",
        epilog="Every block is checked against its CID when an archive is read.",
    )
    sub = ap.add_subparsers(dest="cmd", required=True)

    ap_pack = sub.add_parser("pack", help="Pack files/directories into a .car")
    ap_pack.add_argument("inputs", nargs="+", help="Input files/directories")
    ap_pack.add_argument("--output", "-o", help="Output .car path ('-' for stdout; default: <name>.car)")
    ap_pack.add_argument(
        "--no-wrap",
        dest="wrap",
        action="store_false",
        help="Do not wrap inputs in a top-level directory (one root per input)",
    )
    ap_pack.add_argument("--chunk-size", type=int, default=DEFAULT_CHUNK_SIZE, help="Leaf chunk size in bytes (default 262144)")
    ap_pack.add_argument("--verbose", "-v", action="store_true", help="Print each path as it is packed")

    ap_unpack = sub.add_parser("unpack", help="Unpack a .car (or stdin) to a directory")
    ap_unpack.add_argument("archive", nargs="?", help="Archive path (omit or '-' to read stdin)")
    ap_unpack.add_argument("--output", "-o", default=".", help="Output directory")
    ap_unpack.add_argument("--root", action="append", help="Root CID to unpack (repeatable; default: all roots)")
    ap_unpack.add_argument("--quiet", help="limit outputs to summaries only", action="store_true")

    ap_ls = sub.add_parser("ls", help="List file paths")
    ap_ls.add_argument("archive", help="Archive path ('-' for stdin)")

    ap_ls_full = sub.add_parser("ls-full", help="List file paths and their CIDs")
    ap_ls_full.add_argument("archive", help="Archive path ('-' for stdin)")

    ap_ls_cids = sub.add_parser("ls-cids", help="List the CID of every block")
    ap_ls_cids.add_argument("archive", help="Archive path ('-' for stdin)")

    ap_ls_roots = sub.add_parser("ls-roots", help="List the root CIDs")
    ap_ls_roots.add_argument("archive", help="Archive path ('-' for stdin)")

    ap_hash = sub.add_parser("hash", help="Print the CID of the archive file itself")
    ap_hash.add_argument("archive", help="Archive path ('-' for stdin)")

    args = ap.parse_args(argv)
    try:
        if args.cmd == "pack":
            cmd_pack(args.inputs, output=args.output, wrap_with_directory=args.wrap, chunk_size=args.chunk_size, verbose=args.verbose)
        elif args.cmd == "unpack":
            ok = cmd_unpack(args.archive, outdir=args.output, roots=args.root, quiet=args.quiet)
            sys.exit(0 if ok else 1)
        elif args.cmd == "ls":
            cmd_list(args.archive)
        elif args.cmd == "ls-full":
            cmd_list_full(args.archive)
        elif args.cmd == "ls-cids":
            cmd_list_cids(args.archive)
        elif args.cmd == "ls-roots":
            cmd_list_roots(args.archive)
        elif args.cmd == "hash":
            cmd_hash(args.archive)
        else:
            raise RuntimeError("Unknown command")
    except IntegrityError as e:
        print(f"Error: integrity check failed: {e}", file=sys.stderr)
        sys.exit(2)
    except FormatError as e:
        print(f"Error: malformed archive: {e}", file=sys.stderr)
        sys.exit(2)
    except (CarError, OSError, RuntimeError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)


if __name__ == "__main__":
    main()
