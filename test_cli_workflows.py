from __future__ import annotations

import os
import subprocess
import sys
import tempfile
import unittest
from pathlib import Path
from typing import Dict

from carpack.builder import pack
from carpack.cid import compute_cid, format_cid
from carpack.hashutil import hash_archive
from carpack.reader import index_archive
from carpack.writer import write_archive


def _random_bytes(size: int) -> bytes:
    return os.urandom(size)


def _build_fixture_tree(root: Path) -> Dict[str, bytes]:
    files: Dict[str, bytes] = {}
    (root / "docs").mkdir()
    (root / "docs" / "notes").mkdir()
    content = b"hello world\n" * 20
    (root / "docs" / "readme.txt").write_bytes(content)
    files["docs/readme.txt"] = content

    bin_data = _random_bytes(300_000)
    (root / "docs" / "notes" / "binary.bin").write_bytes(bin_data)
    files["docs/notes/binary.bin"] = bin_data

    (root / "docs" / "notes" / "empty.txt").write_text("")
    files["docs/notes/empty.txt"] = b""
    return files


def _compare_trees(src: Path, dst: Path):
    for root_src, dirs_src, files_src in os.walk(src):
        rel = os.path.relpath(root_src, src)
        root_dst = os.path.join(dst, rel) if rel != "." else str(dst)
        assert os.path.isdir(root_dst), f"Missing directory: {root_dst}"
        dirs_dst = sorted(d for d in os.listdir(root_dst) if os.path.isdir(os.path.join(root_dst, d)))
        files_dst = sorted(f for f in os.listdir(root_dst) if os.path.isfile(os.path.join(root_dst, f)))
        assert dirs_dst == sorted(dirs_src), f"Directory mismatch under {root_src}: {dirs_dst} != {sorted(dirs_src)}"
        assert files_dst == sorted(files_src), f"File mismatch under {root_src}: {files_dst} != {sorted(files_src)}"
        for fname in files_src:
            with open(os.path.join(root_src, fname), "rb") as sf, open(os.path.join(root_dst, fname), "rb") as df:
                assert sf.read() == df.read(), f"File contents differ: {os.path.join(root_dst, fname)}"


class CLIIntegrationTests(unittest.TestCase):
    def run_cli(self, args, *, expect: int | None = 0, cwd: Path | None = None, stdin=None, stdout=None):
        cmd = [sys.executable, "-m", "carpack.cli"] + list(args)
        env = os.environ.copy()
        repo_root = Path(__file__).resolve().parent
        existing = env.get("PYTHONPATH", "")
        env["PYTHONPATH"] = str(repo_root) if not existing else f"{repo_root}{os.pathsep}{existing}"
        proc = subprocess.run(
            cmd,
            cwd=cwd,
            stdin=stdin,
            stdout=stdout if stdout is not None else subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            env=env,
        )
        if expect is not None and proc.returncode != expect:
            raise AssertionError(
                f"CLI exited {proc.returncode}, expected {expect}\nCommand: {' '.join(cmd)}\nSTDOUT:\n{proc.stdout}\nSTDERR:\n{proc.stderr}"
            )
        return proc

    def test_pack_list_unpack_roundtrip(self):
        with tempfile.TemporaryDirectory() as tmp:
            workspace = Path(tmp)
            src_root = workspace / "tree"
            src_root.mkdir()
            files = _build_fixture_tree(src_root)

            archive = workspace / "tree.car"
            pack_proc = self.run_cli(["pack", str(src_root), "-o", str(archive), "-v"])
            self.assertIn("root CID: bafy", pack_proc.stdout)
            self.assertIn("  packing: tree/docs/readme.txt", pack_proc.stdout)
            root_line = next(line for line in pack_proc.stdout.splitlines() if line.startswith("root CID: "))
            root = root_line.split(": ", 1)[1]

            roots_proc = self.run_cli(["ls-roots", str(archive)])
            self.assertEqual(roots_proc.stdout.split(), [root])

            ls_proc = self.run_cli(["ls", str(archive)])
            self.assertEqual(sorted(ls_proc.stdout.split()), sorted(f"tree/{p}" for p in files))

            full_proc = self.run_cli(["ls-full", str(archive)])
            listing = dict(line.split("\t") for line in full_proc.stdout.splitlines())
            self.assertEqual(listing["tree/docs/readme.txt"], format_cid(compute_cid(files["docs/readme.txt"])))
            self.assertEqual(listing["tree/docs/notes/empty.txt"], format_cid(compute_cid(b"")))

            cids_proc = self.run_cli(["ls-cids", str(archive)])
            self.assertEqual(len(cids_proc.stdout.split()), len(index_archive(str(archive))))
            self.assertEqual(cids_proc.stdout.split()[-1], root)

            hash_proc = self.run_cli(["hash", str(archive)])
            self.assertEqual(hash_proc.stdout.strip(), format_cid(hash_archive(str(archive))))

            extract_dir = workspace / "extract"
            unpack_proc = self.run_cli(["unpack", str(archive), "--output", str(extract_dir)])
            self.assertIn(" unpacking: tree/docs/readme.txt", unpack_proc.stdout)
            self.assertIn("   creating: tree/docs/", unpack_proc.stdout)
            self.assertIn(f"root {root}: OK", unpack_proc.stdout)
            self.assertIn("Done: unpacked 3 files", unpack_proc.stdout)
            _compare_trees(src_root, extract_dir / "tree")

    def test_default_output_name(self):
        with tempfile.TemporaryDirectory() as tmp:
            workspace = Path(tmp)
            src = workspace / "photos"
            src.mkdir()
            (src / "cat.jpg").write_bytes(_random_bytes(1000))
            out_dir = workspace / "cwd"
            out_dir.mkdir()
            proc = self.run_cli(["pack", str(src)], cwd=out_dir)
            self.assertIn("  output: photos.car", proc.stdout)
            self.assertTrue((out_dir / "photos.car").exists())

    def test_stream_through_pipes(self):
        with tempfile.TemporaryDirectory() as tmp:
            workspace = Path(tmp)
            src_root = workspace / "tree"
            src_root.mkdir()
            _build_fixture_tree(src_root)

            archive = workspace / "streamed.car"
            with open(archive, "wb") as fh:
                proc = self.run_cli(["pack", str(src_root), "-o", "-"], stdout=fh)
            self.assertIn("root CID: ", proc.stderr)

            # Same bytes as packing to a file
            on_disk = workspace / "on_disk.car"
            self.run_cli(["pack", str(src_root), "-o", str(on_disk)])
            self.assertEqual(archive.read_bytes(), on_disk.read_bytes())

            extract_dir = workspace / "from_stdin"
            with open(archive, "rb") as fh:
                unpack_proc = self.run_cli(["unpack", "-o", str(extract_dir), "--quiet"], stdin=fh)
            self.assertNotIn(" unpacking:", unpack_proc.stdout)
            self.assertIn("Done:", unpack_proc.stdout)
            _compare_trees(src_root, extract_dir / "tree")

    def test_no_wrap_and_root_selection(self):
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            first = root / "first.txt"
            second = root / "second.txt"
            first.write_text("alpha")
            second.write_text("beta")
            archive = root / "multi.car"
            proc = self.run_cli(["pack", str(first), str(second), "--no-wrap", "-o", str(archive)])
            roots = [line.split(": ", 1)[1] for line in proc.stdout.splitlines() if line.startswith("root CID: ")]
            self.assertEqual(roots, [format_cid(compute_cid(b"alpha")), format_cid(compute_cid(b"beta"))])

            out = root / "out"
            self.run_cli(["unpack", str(archive), "-o", str(out), "--root", roots[1]])
            self.assertEqual(os.listdir(out), [roots[1]])
            self.assertEqual((out / roots[1]).read_text(), "beta")

            bad = self.run_cli(["unpack", str(archive), "-o", str(root / "bad"), "--root", "not-a-cid"], expect=2)
            self.assertIn("Error:", bad.stderr)

    def test_collision_is_an_error(self):
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            src = root / "src"
            src.mkdir()
            (src / "file.txt").write_text("alpha")
            archive = root / "src.car"
            self.run_cli(["pack", str(src), "-o", str(archive)])
            out = root / "out"
            self.run_cli(["unpack", str(archive), "-o", str(out)])
            proc = self.run_cli(["unpack", str(archive), "-o", str(out)], expect=2)
            self.assertIn("Destination exists", proc.stderr)
            self.assertEqual((out / "src" / "file.txt").read_text(), "alpha")

    def test_corruption_detected(self):
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            src = root / "data"
            src.mkdir()
            (src / "file.bin").write_bytes(_random_bytes(2048))
            archive = root / "data.car"
            self.run_cli(["pack", str(src), "-o", str(archive)])

            target = next(f for f in index_archive(str(archive)) if f.cid.codec.name == "raw")
            with open(archive, "rb+") as fh:
                fh.seek(target.data_offset)
                b = fh.read(1)
                fh.seek(target.data_offset)
                fh.write(bytes([b[0] ^ 0x55]))

            proc = self.run_cli(["unpack", str(archive), "-o", str(root / "out")], expect=2)
            self.assertIn("integrity check failed", proc.stderr)

            truncated = root / "truncated.car"
            truncated.write_bytes(archive.read_bytes()[:-10])
            proc = self.run_cli(["ls", str(truncated)], expect=2)
            self.assertIn("malformed archive", proc.stderr)

    def test_missing_block_partial_failure(self):
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            keep = root / "keep.txt"
            lose = root / "lose.txt"
            keep.write_text("kept")
            lose.write_text("lost")
            packing = pack([str(keep), str(lose)], wrap_with_directory=False)
            lost_key = bytes(compute_cid(b"lost"))
            # Consume the stream first; roots are only known afterwards
            blocks = [b for b in packing.blocks if b.key != lost_key]
            archive = root / "partial.car"
            with open(archive, "wb") as fh:
                write_archive(packing.roots, blocks, fh)

            out = root / "out"
            proc = self.run_cli(["unpack", str(archive), "-o", str(out)], expect=1)
            self.assertIn("FAIL", proc.stderr)
            self.assertIn("roots ok=1 failed=1", proc.stdout)
            self.assertEqual((out / format_cid(packing.roots[0])).read_text(), "kept")

    def test_missing_inputs(self):
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            proc = self.run_cli(["ls", str(root / "absent.car")], expect=2)
            self.assertIn("Archive not found", proc.stderr)
            proc = self.run_cli(["pack", str(root / "absent")], expect=2)
            self.assertIn("does not exist", proc.stderr)


if __name__ == "__main__":
    unittest.main()
