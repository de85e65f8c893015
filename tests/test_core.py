#!/usr/bin/env python3
"""
Unit tests for DEWA core modules.
Tests cover: platform resolution, path building, validation, error codes,
configuration, fragment cleanup, metadata fetching.
"""

import sys
import os
import json
import subprocess
import tempfile
from pathlib import Path
from unittest import mock

# Add project root to path
PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

import unittest

from dewa.core.constants import ErrorCode, DEFAULT_TITLE, DEFAULT_UPLOADER, DEFAULT_DURATION
from dewa.core.platforms import (
    resolve, is_supported, list_profiles, get_profile, quality_selector,
    FALLBACK_PROFILE,
)
from dewa.core.paths import (
    sanitize_filename, build_filename, build_output_path,
    generate_unique_filename, is_file_complete, format_file_size,
    get_directory_stats,
)
from dewa.core.models import VideoMetadata
from dewa.core.error_codes import (
    JobError, DirectoryCreateError, ProcessExitError, NotFoundError,
    error_for_code,
)
from dewa.core.validators import (
    is_direct_url, is_valid_url, is_valid_path, is_valid_filename,
    validate_download_request, parse_input_lines, parse_csv_file,
)
from dewa.core.config import AppConfig
from dewa.core.cleanup import cleanup_fragments, cleanup_temporary_files
from dewa.core.video_info import fetch_video_info, parse_metadata_output


class TestPlatformResolver(unittest.TestCase):
    """Test URL → platform profile mapping."""

    def test_youtube_variants(self):
        for url in [
            "https://www.youtube.com/watch?v=dQw4w9WgXcQ",
            "http://youtube.com/watch?v=dQw4w9WgXcQ",
            "  https://WWW.YouTube.com/watch?v=dQw4w9WgXcQ  ",
            "youtube.com/watch?v=dQw4w9WgXcQ",
            "https://m.youtube.com/watch?v=dQw4w9WgXcQ",
            "https://youtu.be/dQw4w9WgXcQ",
        ]:
            self.assertEqual(resolve(url).name, "youtube", url)

    def test_other_platforms(self):
        self.assertEqual(resolve("https://www.bilibili.com/video/BV1xx").name, "bilibili")
        self.assertEqual(resolve("https://vimeo.com/12345").name, "vimeo")
        self.assertEqual(resolve("https://www.twitch.tv/videos/1").name, "twitch")
        self.assertEqual(resolve("https://www.magentamusik.de/wacken").name, "magentamusik")

    def test_unknown_host(self):
        resolved = resolve("https://example.com/v/1")
        self.assertEqual(resolved.name, "unknown")
        self.assertEqual(resolved.domain, "example.com")
        self.assertEqual(resolved.profile.directory, "downloads")
        self.assertEqual(resolved.profile.prefix, "")

    def test_strips_www_from_domain(self):
        self.assertEqual(resolve("https://www.example.org/x").domain, "example.org")

    def test_invalid_url(self):
        for url in ["", "not a url", "https://", "http:///path-only"]:
            resolved = resolve(url)
            self.assertIs(resolved.profile, FALLBACK_PROFILE)
            self.assertEqual(resolved.domain, "invalid", url)

    def test_is_supported(self):
        self.assertTrue(is_supported("https://youtu.be/dQw4w9WgXcQ"))
        self.assertFalse(is_supported("https://example.com/v/1"))
        self.assertFalse(is_supported("garbage"))

    def test_list_profiles_excludes_fallback(self):
        names = [p.name for p in list_profiles()]
        self.assertEqual(names, ["youtube", "bilibili", "magentamusik", "vimeo", "twitch"])
        self.assertNotIn("unknown", names)

    def test_get_profile(self):
        self.assertEqual(get_profile("twitch").prefix, "Twitch-")
        self.assertIs(get_profile("nope"), FALLBACK_PROFILE)

    def test_quality_selector(self):
        self.assertEqual(quality_selector("youtube", "best"), "best[height<=1080]")
        self.assertEqual(quality_selector("vimeo", "best"), "best")
        self.assertEqual(quality_selector("bilibili", "720p"), "best[height<=720]")
        self.assertEqual(quality_selector("unknown", "worst"), "worst")
        self.assertEqual(quality_selector("unknown", "8k"), "best")


class TestPathBuilder(unittest.TestCase):
    """Test filename sanitization and output path derivation."""

    def test_sanitize_removes_unsafe_chars(self):
        result = sanitize_filename('a<b>c:d"e/f\\g|h?i*j')
        for ch in '<>:"/\\|?*':
            self.assertNotIn(ch, result)
        self.assertEqual(result, "a-b-c-d-e-f-g-h-i-j")

    def test_sanitize_collapses_dashes_and_spaces(self):
        self.assertEqual(sanitize_filename("a<>|b"), "a-b")
        self.assertEqual(sanitize_filename("  Hello \t  World  "), "Hello World")
        self.assertEqual(sanitize_filename("??Title??"), "Title")

    def test_sanitize_empty(self):
        self.assertEqual(sanitize_filename(""), "Unknown")
        self.assertEqual(sanitize_filename(None), "Unknown")
        self.assertEqual(sanitize_filename("???"), "Unknown")

    def test_sanitize_caps_length(self):
        self.assertEqual(len(sanitize_filename("A" * 300)), 200)

    def test_youtube_filename(self):
        meta = VideoMetadata(title="Never Gonna Give You Up", uploader="Rick Astley")
        name = build_filename(meta, get_profile("youtube"))
        self.assertEqual(name, "Never Gonna Give You Up - Rick Astley.mp4")

    def test_bilibili_prefix(self):
        meta = VideoMetadata(title="稻香", uploader="周杰伦")
        self.assertEqual(build_filename(meta, get_profile("bilibili")), "B站-稻香 - 周杰伦.mp4")

    def test_title_only_profiles(self):
        meta = VideoMetadata(title="Metallica Live", uploader="Wacken")
        self.assertEqual(build_filename(meta, get_profile("magentamusik")), "Metallica Live.mp4")
        self.assertEqual(build_filename(meta, get_profile("twitch")), "Twitch-Metallica Live.mp4")

    def test_filename_byte_cap_preserves_prefix(self):
        meta = VideoMetadata(title="长" * 200, uploader="上传者" * 20)
        name = build_filename(meta, get_profile("bilibili"))
        self.assertLessEqual(len(name.encode("utf-8")), 255)
        self.assertTrue(name.startswith("B站-"))
        self.assertTrue(name.endswith(".mp4"))

    def test_filename_never_exceeds_255_bytes(self):
        for title in ["x" * 500, "é" * 300, "🎬" * 150, "a/b" * 100]:
            for profile in list_profiles() + [FALLBACK_PROFILE]:
                name = build_filename(VideoMetadata(title=title, uploader="u" * 200), profile)
                self.assertLessEqual(len(name.encode("utf-8")), 255)

    def test_filename_leaves_room_for_fragment_files(self):
        meta = VideoMetadata(title="t" * 400, uploader="u")
        name = build_filename(meta, get_profile("youtube"))
        self.assertLessEqual(len((name + ".part-Frag9999").encode("utf-8")), 255)
        self.assertLessEqual(len((name + ".part").encode("utf-8")), 255)
        # Names that already fit are left alone
        short = VideoMetadata(title="t" * 200, uploader="u")
        self.assertEqual(build_filename(short, get_profile("youtube")), "t" * 200 + " - u.mp4")

    def test_fallback_profile_end_to_end(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            resolved = resolve("https://example.com/v/1")
            meta = VideoMetadata(title="My Clip", uploader="")
            path = build_output_path(meta, resolved.profile, tmpdir)
            self.assertEqual(path, Path(tmpdir) / "downloads" / "My Clip.mp4")
            self.assertTrue(path.parent.is_dir())

    def test_override_dir_and_filename(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            custom = Path(tmpdir) / "custom" / "nested"
            meta = VideoMetadata(title="T", uploader="U")
            path = build_output_path(meta, get_profile("youtube"), tmpdir,
                                     override_dir=str(custom),
                                     override_filename="../escape.mp4")
            self.assertEqual(path, custom / "escape.mp4")
            self.assertTrue(custom.is_dir())

    def test_directory_create_error(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            blocker = Path(tmpdir) / "file.txt"
            blocker.write_text("x")
            with self.assertRaises(DirectoryCreateError) as ctx:
                build_output_path(VideoMetadata(title="T"), FALLBACK_PROFILE, tmpdir,
                                  override_dir=str(blocker / "sub"))
            self.assertEqual(ctx.exception.code, ErrorCode.DIRECTORY_CREATE)

    def test_generate_unique_filename(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            base = Path(tmpdir) / "clip.mp4"
            self.assertEqual(generate_unique_filename(base), base)
            base.write_text("x")
            self.assertEqual(generate_unique_filename(base).name, "clip (1).mp4")
            (Path(tmpdir) / "clip (1).mp4").write_text("x")
            self.assertEqual(generate_unique_filename(base).name, "clip (2).mp4")

    def test_generate_unique_filename_terminates(self):
        base = Path("/nonexistent-dir/clip.mp4")
        with mock.patch.object(Path, "exists", return_value=True):
            result = generate_unique_filename(base)
        self.assertRegex(result.name, r"^clip_\d+\.mp4$")

    def test_is_file_complete(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            video = Path(tmpdir) / "v.mp4"
            self.assertFalse(is_file_complete(video))
            video.write_bytes(b"")
            self.assertFalse(is_file_complete(video))
            video.write_bytes(b"data")
            self.assertTrue(is_file_complete(video))
            (Path(tmpdir) / "v.mp4.part").write_bytes(b"x")
            self.assertFalse(is_file_complete(video))

    def test_format_file_size(self):
        self.assertEqual(format_file_size(0), "0 B")
        self.assertEqual(format_file_size(512), "512.00 B")
        self.assertEqual(format_file_size(1024 * 1024), "1.00 MB")

    def test_directory_stats(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            (root / "a.mp4").write_bytes(b"12345")
            (root / "a.mp4.part").write_bytes(b"12")
            stats = get_directory_stats(root)
            self.assertEqual(stats["file_count"], 2)
            self.assertEqual(stats["video_count"], 1)
            self.assertEqual(stats["total_size"], 7)
            self.assertIsNone(get_directory_stats(root / "missing"))


class TestValidators(unittest.TestCase):
    """Test input validation for download requests."""

    def test_is_valid_url(self):
        self.assertTrue(is_valid_url("https://example.com/v/1"))
        self.assertFalse(is_valid_url("ftp://example.com/file"))
        self.assertFalse(is_valid_url("not a url"))

    def test_is_direct_url(self):
        self.assertTrue(is_direct_url("https://www.youtube.com/watch?v=dQw4w9WgXcQ"))
        self.assertTrue(is_direct_url("https://cdn.example.com/movie.MP4"))
        self.assertFalse(is_direct_url("download the latest Metallica video"))

    def test_paths_and_filenames(self):
        self.assertTrue(is_valid_path("/mnt/share/movie"))
        self.assertFalse(is_valid_path("../../etc"))
        self.assertFalse(is_valid_path("/proc/self"))
        self.assertTrue(is_valid_filename("clip.mp4"))
        self.assertFalse(is_valid_filename("a/b.mp4"))
        self.assertFalse(is_valid_filename(".."))

    def test_validate_download_request(self):
        url = validate_download_request("  https://youtu.be/dQw4w9WgXcQ ", "720p")
        self.assertEqual(url, "https://youtu.be/dQw4w9WgXcQ")
        with self.assertRaises(JobError) as ctx:
            validate_download_request("https://youtu.be/x", "8k")
        self.assertEqual(ctx.exception.code, ErrorCode.VALIDATION)
        with self.assertRaises(JobError):
            validate_download_request("nope")
        with self.assertRaises(JobError):
            validate_download_request("https://youtu.be/x", custom_directory="../up")

    def test_parse_input_lines(self):
        text = """
        https://www.youtube.com/watch?v=dQw4w9WgXcQ
        # a comment
        https://vimeo.com/12345

        not a url
        """
        self.assertEqual(len(parse_input_lines(text)), 2)

    def test_parse_csv_with_header(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "list.csv"
            path.write_text("title,url\nA,https://vimeo.com/1\nB,bad\n", encoding="utf-8")
            self.assertEqual(parse_csv_file(str(path)), ["https://vimeo.com/1"])


class TestErrorCodes(unittest.TestCase):
    """Test error taxonomy."""

    def test_codes_are_fixed_per_class(self):
        self.assertEqual(NotFoundError("x").code, ErrorCode.NOT_FOUND)
        err = ProcessExitError("exit 3", exit_code=3)
        self.assertEqual(err.code, ErrorCode.PROCESS_EXIT)
        self.assertEqual(err.exit_code, 3)
        self.assertIn(ErrorCode.PROCESS_EXIT, str(err))

    def test_error_for_code(self):
        self.assertIsInstance(error_for_code(ErrorCode.DIRECTORY_CREATE, "m"), DirectoryCreateError)
        generic = error_for_code("ERR_SOMETHING", "m")
        self.assertEqual(type(generic), JobError)
        self.assertEqual(error_for_code(None, "m").code, ErrorCode.DOWNLOAD_FAILED)

    def test_every_code_has_a_class(self):
        for code in (ErrorCode.VALIDATION, ErrorCode.DIRECTORY_CREATE, ErrorCode.PROCESS_SPAWN,
                     ErrorCode.PROCESS_EXIT, ErrorCode.DOWNLOAD_CANCELLED, ErrorCode.NOT_FOUND,
                     ErrorCode.STORAGE, ErrorCode.TOOL_INSTALL):
            err = error_for_code(code, "m")
            self.assertIsNot(type(err), JobError, code)
            self.assertEqual(err.code, code)
            self.assertEqual(err.message, "m")


class TestConfig(unittest.TestCase):
    """Test configuration loading, env overrides and validation."""

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.config_path = Path(self.tmpdir.name) / "config.json"

    def tearDown(self):
        self.tmpdir.cleanup()

    def test_defaults(self):
        config = AppConfig(self.config_path, environ={})
        self.assertEqual(config.max_retries, 10)
        self.assertEqual(config.concurrent_fragments, 4)
        self.assertEqual(config.throttled_rate, "100K")
        self.assertTrue(config.auto_cleanup)

    def test_env_overrides_and_clamping(self):
        config = AppConfig(self.config_path, environ={
            "MAX_RETRIES": "500",
            "CONCURRENT_FRAGMENTS": "abc",
            "AUTO_CLEANUP": "false",
            "DOWNLOAD_PATH": "/data/videos",
            "LOG_LEVEL": "warn",
        })
        self.assertEqual(config.max_retries, 100)
        self.assertEqual(config.concurrent_fragments, 4)
        self.assertFalse(config.auto_cleanup)
        self.assertEqual(config.download_path, "/data/videos")
        self.assertEqual(config.log_level, "WARNING")

    def test_file_then_env(self):
        self.config_path.write_text(json.dumps({"throttled_rate": "1M", "max_retries": 3}))
        config = AppConfig(self.config_path, environ={"MAX_RETRIES": "7"})
        self.assertEqual(config.throttled_rate, "1M")
        self.assertEqual(config.max_retries, 7)

    def test_corrupt_file_uses_defaults(self):
        self.config_path.write_text("{broken")
        with self.assertLogs("dewa.core.config", level="WARNING"):
            config = AppConfig(self.config_path, environ={})
        self.assertEqual(config.max_retries, 10)

    def test_set_persists(self):
        config = AppConfig(self.config_path, environ={})
        config.set("default_quality", "720p")
        reloaded = AppConfig(self.config_path, environ={})
        self.assertEqual(reloaded.default_quality, "720p")

    def test_check_reports_missing_tool(self):
        config = AppConfig(self.config_path, environ={
            "YT_DLP_PATH": "/nonexistent/yt-dlp",
            "DOWNLOAD_PATH": str(Path(self.tmpdir.name) / "dl"),
        })
        problems = config.check()
        self.assertEqual(len(problems), 1)
        self.assertIn("yt-dlp not found", problems[0])


class TestArtifactCleaner(unittest.TestCase):
    """Test fragment cleanup after a successful download."""

    def test_cleanup_fragments(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            output = root / "My Clip.mp4"
            output.write_bytes(b"final")
            leftovers = [
                "My Clip.mp4.part-Frag1",
                "My Clip.mp4.part-Frag2.part",
                "My Clip.mp4.ytdl",
                "My Clip.mp4.part",
                "My Clip.f137.mp4",
            ]
            for name in leftovers:
                (root / name).write_bytes(b"abc")
            (root / "Other Video.mp4.part").write_bytes(b"keep")

            result = cleanup_fragments(output)

            self.assertEqual(result.files_removed, len(leftovers))
            self.assertEqual(result.bytes_freed, 3 * len(leftovers))
            self.assertTrue(output.exists())
            self.assertTrue((root / "Other Video.mp4.part").exists())

    def test_cleanup_ignores_delete_failures(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            output = root / "v.mp4"
            (root / "v.mp4.part").write_bytes(b"a")
            (root / "v.mp4.ytdl").write_bytes(b"b")
            real_unlink = Path.unlink

            def flaky_unlink(self, *args, **kwargs):
                if self.name.endswith(".ytdl"):
                    raise PermissionError("denied")
                return real_unlink(self, *args, **kwargs)

            with mock.patch.object(Path, "unlink", flaky_unlink):
                result = cleanup_fragments(output)

            self.assertEqual(result.files_removed, 1)
            self.assertTrue((root / "v.mp4.ytdl").exists())

    def test_cleanup_missing_directory(self):
        result = cleanup_fragments(Path("/nonexistent-dir/v.mp4"))
        self.assertEqual(result.files_removed, 0)

    def test_cleanup_temporary_files(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            for name in ["a.part", "b.mp4.part-Frag3", "c.ytdl", "d.tmp", "keep.mp4"]:
                (root / name).write_bytes(b"x")
            result = cleanup_temporary_files(root)
            self.assertEqual(result.files_removed, 4)
            self.assertEqual([p.name for p in root.iterdir()], ["keep.mp4"])


class TestMetadataFetcher(unittest.TestCase):
    """Test yt-dlp --print metadata extraction."""

    URL = "https://www.youtube.com/watch?v=dQw4w9WgXcQ"

    def _completed(self, stdout="", returncode=0, stderr=""):
        return subprocess.CompletedProcess(["yt-dlp"], returncode, stdout=stdout, stderr=stderr)

    def test_parse_full_output(self):
        info = parse_metadata_output("Title\nUploader\n3:33\n1000\n20091025\n", self.URL)
        self.assertEqual(info.title, "Title")
        self.assertEqual(info.uploader, "Uploader")
        self.assertEqual(info.duration, "3:33")
        self.assertEqual(info.view_count, "1000")
        self.assertEqual(info.upload_date, "20091025")
        self.assertEqual(info.url, self.URL)

    def test_parse_missing_fields(self):
        info = parse_metadata_output("Title\nNA\n", self.URL)
        self.assertEqual(info.title, "Title")
        self.assertEqual(info.uploader, DEFAULT_UPLOADER)
        self.assertEqual(info.duration, DEFAULT_DURATION)
        self.assertIsNone(info.view_count)

    def test_fetch_success(self):
        with mock.patch("dewa.core.video_info.run_subprocess_capture",
                        return_value=self._completed("T\nU\n1:00\n5\n20240101\n")) as run:
            info = fetch_video_info(self.URL, "/usr/bin/yt-dlp", timeout=12)
        args = run.call_args[0][0]
        self.assertEqual(args[0], "/usr/bin/yt-dlp")
        self.assertEqual(args[-1], self.URL)
        self.assertEqual(run.call_args[1]["timeout"], 12)
        prints = [args[i + 1] for i, a in enumerate(args) if a == "--print"]
        self.assertEqual(prints, ["title", "uploader", "duration_string", "view_count", "upload_date"])
        self.assertEqual(info.title, "T")

    def test_fetch_failures_return_defaults(self):
        for effect in [
            subprocess.TimeoutExpired("yt-dlp", 30),
            FileNotFoundError("yt-dlp"),
            None,
        ]:
            kwargs = {"side_effect": effect} if effect else {
                "return_value": self._completed(returncode=1, stderr="ERROR: unavailable")
            }
            with mock.patch("dewa.core.video_info.run_subprocess_capture", **kwargs):
                info = fetch_video_info(self.URL)
            self.assertEqual(info.title, DEFAULT_TITLE)
            self.assertEqual(info.uploader, DEFAULT_UPLOADER)
            self.assertIsNone(info.upload_date)


if __name__ == "__main__":
    unittest.main()
