"""
PlaylistMirror - Transcoding

Probe source audio with ffprobe, pick an Opus bitrate from the source quality,
and convert YouTube's .webm/.m4a containers to .opus with ffmpeg.
"""

import json
import subprocess
from dataclasses import dataclass
from pathlib import Path

from catalog import Catalog, CatalogStore
from constants import (
    BITRATE_TIER_THRESHOLDS, FFMPEG_BIN, FFPROBE_BIN, HIGH_RES_SAMPLE_RATE,
    LOSSLESS_CODECS, TIMEOUT_FFMPEG_CONVERT, TIMEOUT_FFPROBE,
    TRANSCODE_SOURCE_EXTENSIONS, TRANSCODE_TARGET_EXTENSION,
)
from context import RunContext, StopRequested
from db import finish_job, start_job
from pool import JobPool
from settings import (
    get_concurrency, get_fallback_bitrate, get_quality_tiers,
    get_setting_bool, get_setting_int,
)
from utils import set_file_permissions, short_title


class TranscodeError(Exception):
    """ffmpeg failed. The message carries the tail of its stderr."""


@dataclass
class AudioInfo:
    codec: str
    bitrate: int          # kbps, 0 when unknown
    sample_rate: int = 44100
    channels: int = 2
    is_lossless: bool = False


def parse_probe_output(stdout: str) -> AudioInfo | None:
    """Read the first audio stream from ffprobe JSON. None if there isn't one."""
    try:
        data = json.loads(stdout)
    except (json.JSONDecodeError, TypeError):
        return None
    if not isinstance(data, dict):
        return None

    stream = next(
        (s for s in data.get("streams") or [] if s.get("codec_type") == "audio"),
        None,
    )
    if stream is None:
        return None

    def _int(value) -> int:
        try:
            return int(value)
        except (TypeError, ValueError):
            return 0

    codec = (stream.get("codec_name") or "").lower()
    # Stream bit_rate first, container bit_rate as fallback
    bit_rate = _int(stream.get("bit_rate")) or _int((data.get("format") or {}).get("bit_rate"))
    return AudioInfo(
        codec=codec,
        bitrate=round(bit_rate / 1000),
        sample_rate=_int(stream.get("sample_rate")) or 44100,
        channels=_int(stream.get("channels")) or 2,
        is_lossless=codec in LOSSLESS_CODECS,
    )


def probe_audio_info(path: Path, context: RunContext) -> AudioInfo | None:
    """ffprobe a file. Any failure is advisory and returns None."""
    cmd = [
        FFPROBE_BIN,
        "-v", "quiet",
        "-print_format", "json",
        "-show_format",
        "-show_streams",
        str(path),
    ]
    try:
        result = context.run(cmd, timeout=TIMEOUT_FFPROBE)
    except (subprocess.TimeoutExpired, OSError) as e:
        print(f"Probe failed for {path.name}: {e}")
        return None
    if result.returncode != 0:
        print(f"Probe failed for {path.name} (exit {result.returncode})")
        return None
    return parse_probe_output(result.stdout)


def select_tier(info: AudioInfo | None) -> str | None:
    """Quality tier for a probed source, first match wins. None means use the fallback."""
    if info is None:
        return None
    if info.is_lossless:
        return "lossless"
    if info.sample_rate >= HIGH_RES_SAMPLE_RATE:
        return "high"
    for threshold, tier in BITRATE_TIER_THRESHOLDS:
        if info.bitrate >= threshold:
            return tier
    if info.bitrate > 0:
        return "minimum"
    return None


def select_bitrate(info: AudioInfo | None, tiers: dict[str, str], fallback: str) -> str:
    tier = select_tier(info)
    if tier is None:
        return fallback
    return tiers.get(tier, fallback)


def convert_to_opus(source: Path, output: Path, bitrate: str, context: RunContext, threads: int = 2) -> None:
    """Transcode one file with libopus VBR. Raises TranscodeError on failure."""
    cmd = [
        FFMPEG_BIN,
        "-i", str(source),
        "-vn",
        "-c:a", "libopus",
        "-b:a", bitrate,
        "-vbr", "on",
        "-compression_level", "10",
        "-application", "audio",
        "-threads", str(threads),
        "-y",
        str(output),
    ]
    try:
        result = context.run(cmd, timeout=TIMEOUT_FFMPEG_CONVERT)
    except subprocess.TimeoutExpired:
        raise TranscodeError(f"ffmpeg timed out after {TIMEOUT_FFMPEG_CONVERT}s")
    except OSError as e:
        raise TranscodeError(f"Could not start {FFMPEG_BIN}: {e}")
    if result.returncode != 0:
        raise TranscodeError(f"ffmpeg exit code {result.returncode}: {(result.stderr or '')[-200:]}")


def transcode_file(
    source: Path,
    context: RunContext,
    *,
    dynamic_quality: bool = True,
    tiers: dict[str, str] | None = None,
    fallback: str = "128k",
    delete_source: bool = True,
    threads: int = 2,
    convert=convert_to_opus,
    probe=probe_audio_info,
) -> dict:
    """Convert one source next to itself. Returns {"status", "output", "bitrate"}.

    status is "skipped" when the .opus already exists, otherwise "converted".
    TranscodeError propagates and the source is left in place. ffmpeg writes to
    a .temp name that only becomes the .opus once the conversion succeeded.
    """
    source = Path(source)
    output = source.with_suffix(TRANSCODE_TARGET_EXTENSION)
    if output.exists():
        print(f"Skip (exists): {output.name}")
        return {"status": "skipped", "output": output, "bitrate": None}

    bitrate = fallback
    detail = ""
    if dynamic_quality:
        info = probe(source, context)
        if info is not None:
            bitrate = select_bitrate(info, tiers or {}, fallback)
            detail = f" [{info.codec}@{info.bitrate}k -> {bitrate}]"

    print(f"Converting: {short_title(source.stem)}{detail}")
    partial = output.with_name(f"{output.stem}.temp{output.suffix}")
    try:
        convert(source, partial, bitrate, context, threads=threads)
    except (TranscodeError, StopRequested):
        partial.unlink(missing_ok=True)
        raise
    partial.replace(output)
    set_file_permissions(output)
    print(f"Converted: {short_title(source.stem)}.opus @ {bitrate}")

    # Only drop the source once the output is really there
    if delete_source and output.exists():
        try:
            source.unlink()
        except OSError as e:
            print(f"Could not delete source {source.name}: {e}")
    return {"status": "converted", "output": output, "bitrate": bitrate}


def find_transcode_sources(source_dir: Path) -> list[Path]:
    return sorted(
        p for p in source_dir.iterdir()
        if p.is_file() and p.suffix.lower() in TRANSCODE_SOURCE_EXTENSIONS
    )


def _repoint_catalog(catalog: Catalog, source_name: str, output_name: str) -> None:
    with catalog.lock:
        for entry in catalog.entries():
            if entry.local_filename == source_name:
                catalog.update(entry.id, local_filename=output_name)


def run_transcode_queue(
    source_dir: Path,
    context: RunContext,
    catalog: Catalog | None = None,
    store: CatalogStore | None = None,
    run_id: str | None = None,
    concurrency: int | None = None,
    transcode=transcode_file,
) -> dict:
    """Convert every .webm/.m4a in source_dir through a bounded pool.

    Returns {"converted", "skipped", "failed", "quality_stats"}.
    """
    source_dir = Path(source_dir)
    results = {"converted": 0, "skipped": 0, "failed": 0, "quality_stats": {}}
    if not source_dir.is_dir():
        print(f"Transcode source directory not found: {source_dir}")
        return results

    sources = find_transcode_sources(source_dir)
    if not sources:
        print("No source files to convert")
        return results

    dynamic_quality = get_setting_bool("dynamic_quality", True)
    tiers = get_quality_tiers()
    fallback = get_fallback_bitrate()
    options = {
        "dynamic_quality": dynamic_quality,
        "tiers": tiers,
        "fallback": fallback,
        "delete_source": get_setting_bool("delete_source_after_convert", True),
        "threads": max(1, get_setting_int("ffmpeg_threads_per_job", 2)),
    }
    concurrency = concurrency or get_concurrency("transcode")
    mode = "dynamic quality" if dynamic_quality else f"fixed quality ({fallback})"
    print(f"Converting {len(sources)} file(s) to Opus, {concurrency} at a time, {mode}")

    def job(source: Path) -> dict:
        job_id = start_job(run_id, "transcode", source.name, source.stem)
        try:
            outcome = transcode(source, context, **options)
        except (TranscodeError, StopRequested) as e:
            context.record_failure(source.name, source.stem, "transcode", "ffmpeg", str(e))
            finish_job(job_id, "failed", reason="ffmpeg", error=str(e))
            raise
        finish_job(job_id, "completed")
        if outcome["status"] == "converted" and catalog is not None:
            _repoint_catalog(catalog, source.name, outcome["output"].name)
        return outcome

    pool = JobPool(concurrency, name="Transcode", context=context)
    futures = [pool.add(job, source) for source in sources]
    pool.join()

    for future in futures:
        if future.cancelled() or future.exception() is not None:
            results["failed"] += 1
            continue
        outcome = future.result()
        if outcome["status"] == "skipped":
            results["skipped"] += 1
            continue
        results["converted"] += 1
        bitrate = outcome["bitrate"]
        results["quality_stats"][bitrate] = results["quality_stats"].get(bitrate, 0) + 1

    context.increment("converted", results["converted"])
    if results["quality_stats"]:
        distribution = ", ".join(f"{br}:{n}" for br, n in sorted(results["quality_stats"].items()))
        print(f"Quality distribution: {distribution}")
    print(f"Conversion finished: {results['converted']} converted, {results['failed']} failed")

    if catalog is not None and store is not None and results["converted"]:
        store.save(catalog)
    return results
