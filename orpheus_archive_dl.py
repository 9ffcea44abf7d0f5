#!/usr/bin/env python3
"""
High-level goals:
- Crawl the Orpheus radio programs archive and list its programs.
- Scan one program into a numbered, chronological list of tracks.
- Cache the crawl as JSON so repeated runs skip programs already scanned.
- Download a scanned program as ID3-tagged MP3 files.

Technical steps:
1) Fetch the programs archive page and read each afisha-list-item entry.
2) Find the last ?start= offset of a program's paginated blog listing.
3) Walk every listing page, collecting episode links, dates and thumbnails.
4) Reverse the collected episodes so the oldest comes first.
5) Visit each episode page and read the MyPlayer({...}) configs in its head;
   one config is one track, several configs split the episode into several
   tracks, none falls back to the embedded iframe player.
6) Save the archive to programsarchive.json and tag downloads with mutagen.
"""

import argparse
import datetime
import hashlib
import json
import os
import re
import shutil
import sys
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterator
from urllib.error import HTTPError, URLError
from urllib.parse import parse_qs, urljoin, urlsplit
from urllib.request import Request, urlopen

from bs4 import BeautifulSoup
from bs4.element import Tag
from mutagen.id3 import APIC, ID3, ID3NoHeaderError, TALB, TDRC, TIT2, TPE1, TRCK, WOAS

USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
    "AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120 Safari/537.36"
)
ROOT = "http://muzcentrum.ru"
PROGRAMS_ARCHIVE_URL = f"{ROOT}/orpheusradio/programsarchive"
PAGE_SIZE = 10

LISTING_DATE_FORMAT = "%d.%m.%Y"
CACHE_DATE_FORMAT = "%Y-%m-%d"
TAG_DATE_FORMAT = "%Y-%m-%d"

SEED_ARCHIVE_FILE = "archive.json"
PROGRAMS_ARCHIVE_FILE = "programsarchive.json"

PLAYER_RE = re.compile(r"MyPlayer\(\{[^}]+\}")
LISTING_DATE_RE = re.compile(r"\s*(\d{1,2}\.\d{1,2}\.\d{4})")


def _field_re(name: str) -> re.Pattern:
    return re.compile(r"\b" + name + r"""\s*:\s*(['"])((?:\\.|(?!\1).)*)\1""")


SRC_RE = _field_re("src")
DESCRIPTION_RE = _field_re("description")


class ArchiveError(Exception):
    pass


class FetchError(ArchiveError):
    def __init__(self, url: str, reason: Any):
        super().__init__(f"failed to fetch {url}: {reason}")
        self.url = url
        self.reason = reason


class ParseError(ArchiveError, ValueError):
    pass


class DateParseError(ParseError):
    pass


class CacheLoadError(ArchiveError):
    pass


@dataclass
class AudioCandidate:
    url: str
    description: str | None = None


@dataclass
class Record:
    album: str
    url: str
    track_number: int = 0
    title: str | None = None
    artist: str | None = None
    date: datetime.date | None = None
    audio_url: str | None = None
    img_url: str | None = None


@dataclass
class Program:
    url: str
    title: str
    artist: str | None = None
    # None until the program is scanned; a scanned program may have no records.
    records: list[Record] | None = None

    @property
    def slug(self) -> str:
        return url_slug(self.url)

    @property
    def scanned(self) -> bool:
        return self.records is not None


@dataclass
class Archive:
    url: str
    programs: list[Program] = field(default_factory=list)

    def find(self, slug: str) -> Program | None:
        for program in self.programs:
            if program.slug == slug:
                return program
        return None


@dataclass
class DownloadResult:
    record: Record
    path: Path | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class Spinner:
    def __init__(self, label: str, enabled: bool = True):
        self.label = label
        self.enabled = enabled
        self._mode = None
        self._ctx = None
        self._bar = None

    def __enter__(self):
        if not self.enabled:
            return self
        try:
            from rich.status import Status

            self._status = Status(self.label, spinner="dots")
            self._status.start()
            self._mode = "rich"
        except ImportError:
            try:
                from alive_progress import alive_bar

                self._ctx = alive_bar(None, title=self.label, spinner="dots")
                self._bar = self._ctx.__enter__()
                self._mode = "alive"
            except ImportError:
                try:
                    from yaspin import yaspin

                    self._status = yaspin(text=self.label)
                    self._status.start()
                    self._mode = "yaspin"
                except ImportError:
                    self._mode = None
        return self

    def update(self, label: str):
        """Replace the status text, e.g. with the program being scanned."""
        self.label = label
        if self._mode == "rich":
            self._status.update(label)
        elif self._mode == "alive":
            self._bar.title = label
        elif self._mode == "yaspin":
            self._status.text = label

    def __exit__(self, exc_type, exc, tb):
        if not self._mode:
            return False
        if self._mode == "alive":
            self._ctx.__exit__(exc_type, exc, tb)
        else:
            self._status.stop()
        return False


class PageCache:
    """On-disk cache of fetched pages keyed by URL.

    Entries older than ``ttl_seconds`` are treated as missing, but their
    validators are still sent so the server can answer 304 Not Modified.
    """

    def __init__(self, base_dir: Path, ttl_seconds: int = 3600):
        self.base_dir = base_dir
        self.ttl_seconds = ttl_seconds
        self.base_dir.mkdir(parents=True, exist_ok=True)

    def _paths(self, url: str) -> tuple[Path, Path]:
        key = hashlib.sha256(url.encode("utf-8")).hexdigest()
        return self.base_dir / f"{key}.html", self.base_dir / f"{key}.meta.json"

    def _read(self, url: str) -> tuple[str | None, dict[str, Any] | None]:
        body_path, meta_path = self._paths(url)
        if not body_path.exists() or not meta_path.exists():
            return None, None
        try:
            meta = json.loads(meta_path.read_text(encoding="utf-8"))
            return body_path.read_text(encoding="utf-8"), meta
        except (OSError, ValueError):
            return None, None

    def get(self, url: str) -> str | None:
        body, meta = self._read(url)
        if meta is None or time.time() - meta.get("fetched_at", 0) > self.ttl_seconds:
            return None
        return body

    def validators(self, url: str) -> dict[str, str]:
        _body, meta = self._read(url)
        headers = {}
        if meta and meta.get("etag"):
            headers["If-None-Match"] = meta["etag"]
        if meta and meta.get("last_modified"):
            headers["If-Modified-Since"] = meta["last_modified"]
        return headers

    def stale(self, url: str) -> str | None:
        body, _meta = self._read(url)
        return body

    def touch(self, url: str, headers: dict[str, Any]):
        """Mark a revalidated entry fresh, keeping validators a 304 left out."""
        _body, meta = self._read(url)
        if meta is None:
            return
        meta["fetched_at"] = time.time()
        if headers.get("ETag"):
            meta["etag"] = headers["ETag"]
        if headers.get("Last-Modified"):
            meta["last_modified"] = headers["Last-Modified"]
        self._paths(url)[1].write_text(json.dumps(meta), encoding="utf-8")

    def set(self, url: str, body: str, headers: dict[str, Any]):
        body_path, meta_path = self._paths(url)
        meta = {
            "url": url,
            "fetched_at": time.time(),
            "etag": headers.get("ETag"),
            "last_modified": headers.get("Last-Modified"),
        }
        body_path.write_text(body, encoding="utf-8")
        meta_path.write_text(json.dumps(meta), encoding="utf-8")


def fetch_text(url: str, cache: PageCache | None = None, ignore_cache: bool = False) -> str:
    use_cache = cache is not None and not ignore_cache
    headers = {"User-Agent": USER_AGENT}
    if use_cache:
        cached = cache.get(url)
        if cached is not None:
            return cached
        headers.update(cache.validators(url))
    req = Request(url, headers=headers)
    try:
        with urlopen(req, timeout=30) as resp:
            charset = resp.headers.get_content_charset() or "utf-8"
            body = resp.read().decode(charset, "replace")
            response_headers = dict(resp.headers)
    except HTTPError as exc:
        if exc.code == 304 and use_cache:
            stale = cache.stale(url)
            if stale is not None:
                cache.touch(url, dict(exc.headers or {}))
                return stale
        raise FetchError(url, exc) from exc
    except (URLError, OSError) as exc:
        raise FetchError(url, exc) from exc
    if cache is not None:
        cache.set(url, body, response_headers)
    return body


def fetch_document(url: str, cache: PageCache | None = None, ignore_cache: bool = False) -> BeautifulSoup:
    return BeautifulSoup(fetch_text(url, cache=cache, ignore_cache=ignore_cache), "html.parser")


def fetch_bytes(url: str) -> bytes:
    req = Request(url, headers={"User-Agent": USER_AGENT})
    try:
        with urlopen(req, timeout=30) as resp:
            return resp.read()
    except (URLError, OSError) as exc:
        raise FetchError(url, exc) from exc


def download_file(url: str, dest: Path):
    req = Request(url, headers={"User-Agent": USER_AGENT})
    try:
        with urlopen(req, timeout=30) as resp, dest.open("wb") as fh:
            shutil.copyfileobj(resp, fh)
    except (URLError, OSError) as exc:
        raise FetchError(url, exc) from exc


def resolve_url(href: str, base: str = ROOT) -> str:
    href = href.strip()
    if href.startswith("http"):
        return href
    return urljoin(base, href)


def url_slug(url: str) -> str:
    return urlsplit(url).path.rstrip("/").rsplit("/", 1)[-1]


def _text(tag: Tag | None) -> str | None:
    if tag is None:
        return None
    text = tag.get_text(" ", strip=True)
    return text or None


def _first_link(tag: Tag | None) -> Tag | None:
    if tag is None:
        return None
    return tag.find(href=True)


# Program listing


def parse_programs(document: BeautifulSoup) -> list[Program]:
    programs: list[Program] = []
    for item in document.select("div.afisha-list-item"):
        text_block = item.select_one("div.ait-txt")
        link = _first_link(text_block)
        if link is None:
            continue
        programs.append(
            Program(
                url=resolve_url(link["href"]),
                title=link.get_text(" ", strip=True),
                artist=_text(text_block.find("p")),
            )
        )
    return programs


def list_programs(cache: PageCache | None = None, ignore_cache: bool = False) -> list[Program]:
    return parse_programs(fetch_document(PROGRAMS_ARCHIVE_URL, cache=cache, ignore_cache=ignore_cache))


# Pagination


def parse_last_page_offset(document: BeautifulSoup) -> int:
    pagination = document.select_one("ul.pagination-list")
    if pagination is None:
        return 0
    for item in reversed(pagination.find_all("li")):
        link = _first_link(item)
        if link is None:
            continue
        values = parse_qs(urlsplit(link["href"]).query).get("start")
        if not values:
            return 0
        try:
            return max(0, int(values[0]))
        except ValueError:
            return 0
    return 0


def last_page_offset(listing_url: str, cache: PageCache | None = None, ignore_cache: bool = False) -> int:
    return parse_last_page_offset(fetch_document(listing_url, cache=cache, ignore_cache=ignore_cache))


def page_offsets(last_offset: int) -> range:
    return range(0, last_offset + 1, PAGE_SIZE)


def listing_page_url(program_url: str, offset: int) -> str:
    return f"{program_url}?start={offset}"


# Player configs


def iter_player_configs(script: str) -> Iterator[AudioCandidate]:
    """Yield one candidate per ``MyPlayer({...})`` call that names a ``src``."""
    for match in PLAYER_RE.finditer(script):
        config = match.group(0)
        src = SRC_RE.search(config)
        if not src or not src.group(2).strip():
            continue
        description = None
        match_description = DESCRIPTION_RE.search(config)
        if match_description:
            description = _unescape_js(match_description.group(2)).strip() or None
        yield AudioCandidate(url=resolve_url(_unescape_js(src.group(2))), description=description)


def _unescape_js(value: str) -> str:
    return re.sub(r"\\(.)", r"\1", value)


def extract_audio_candidates(head: Tag | None) -> list[AudioCandidate]:
    candidates: list[AudioCandidate] = []
    if head is None:
        return candidates
    for script in head.find_all("script"):
        if script.get("type", "text/javascript").lower() != "text/javascript":
            continue
        data = script.string or script.get_text()
        if data:
            candidates.extend(iter_player_configs(data))
    return candidates


# Listing pages


def parse_listing_date(text: str | None) -> datetime.date:
    match = LISTING_DATE_RE.match(text or "")
    if not match:
        raise DateParseError(f"Unparseable listing date: {text!r}")
    try:
        return datetime.datetime.strptime(match.group(1), LISTING_DATE_FORMAT).date()
    except ValueError as exc:
        raise DateParseError(f"Unparseable listing date: {text!r}") from exc


def parse_listing_page(document: BeautifulSoup, program: Program) -> list[Record]:
    blog = document.select_one("div.blog")
    if blog is None:
        return []
    records: list[Record] = []
    for post in blog.find_all(attrs={"itemprop": "blogPost"}):
        post_date = parse_listing_date(_text(post.select_one("div.page-header")))
        link = _first_link(post.select_one("div.ait-txt"))
        if link is None:
            continue
        thumbnail = None
        picture = post.select_one("div.ait-pic")
        if picture is not None:
            image = picture.find(attrs={"itemprop": "thumbnailUrl"})
            if image is not None and image.get("src"):
                thumbnail = resolve_url(image["src"])
        records.append(
            Record(
                album=program.title,
                artist=program.artist,
                url=resolve_url(link["href"]),
                date=post_date,
                img_url=thumbnail,
            )
        )
    more = blog.select_one("div.items-more")
    if more is not None:
        for link in more.select("a[href]"):
            records.append(Record(album=program.title, artist=program.artist, url=resolve_url(link["href"])))
    return records


def collect_candidates(
    program: Program,
    cache: PageCache | None = None,
    ignore_cache: bool = False,
    verbose: bool = False,
) -> list[Record]:
    last_offset = last_page_offset(program.url, cache=cache, ignore_cache=ignore_cache)
    candidates: list[Record] = []
    for offset in page_offsets(last_offset):
        url = listing_page_url(program.url, offset)
        page = parse_listing_page(fetch_document(url, cache=cache, ignore_cache=ignore_cache), program)
        if verbose:
            print(f"Listing {url}: {len(page)} episodes", file=sys.stderr)
        candidates.extend(page)
    candidates.reverse()
    return candidates


# Detail pages


def parse_detail_title(document: BeautifulSoup) -> str:
    item = document.find(id="col-l")
    if item is None:
        raise ParseError("Detail page has no #col-l content region")
    title = _text(item.find(attrs={"itemprop": "name"}))
    if title is None:
        raise ParseError("Detail page has no itemprop=name title")
    return title


def resolve_frame_audio(document: BeautifulSoup, cache: PageCache | None = None, ignore_cache: bool = False) -> str | None:
    item = document.find(id="col-l")
    frame = item.find("iframe") if item is not None else None
    if frame is None:
        return None
    frame_src = (frame.get("src") or "").strip()
    if not frame_src.startswith("http"):
        return None
    body = fetch_document(frame_src, cache=cache, ignore_cache=ignore_cache).body
    link = body.select_one("a[title]") if body is not None else None
    if link is None or not link.get("href", "").strip():
        return None
    return resolve_url(link["href"], base=frame_src)


def resolve_records(
    records: list[Record],
    cache: PageCache | None = None,
    ignore_cache: bool = False,
    verbose: bool = False,
) -> list[Record]:
    """Resolve candidates in place, oldest first.

    Each detail page is fetched once. Extra tracks from a multi-player page are
    inserted right after the current record, already resolved, and the cursor
    moves past them. Candidates without audio are removed.
    """
    index = 0
    pos = 0
    while pos < len(records):
        record = records[pos]
        document = fetch_document(record.url, cache=cache, ignore_cache=ignore_cache)
        title = parse_detail_title(document)
        candidates = extract_audio_candidates(document.head)

        if not candidates:
            audio_url = resolve_frame_audio(document, cache=cache, ignore_cache=ignore_cache)
            if audio_url is None:
                if verbose:
                    print(f"Skipping {record.url}: no playable audio", file=sys.stderr)
                del records[pos]
                continue
            index += 1
            record.track_number = index
            record.title = title
            record.audio_url = audio_url
        elif len(candidates) == 1:
            index += 1
            record.track_number = index
            record.title = title
            record.audio_url = candidates[0].url
        else:
            first, rest = candidates[0], candidates[1:]
            index += 1
            record.track_number = index
            record.title = first.description or title
            record.audio_url = first.url
            extra = []
            for candidate in rest:
                index += 1
                extra.append(
                    Record(
                        track_number=index,
                        title=candidate.description,
                        artist=record.artist,
                        album=record.album,
                        url=record.url,
                        date=record.date,
                        audio_url=candidate.url,
                        img_url=record.img_url,
                    )
                )
            records[pos + 1:pos + 1] = extra
            pos += len(extra)
        if verbose:
            print(f"{record.track_number}. {record.title} -> {record.audio_url}", file=sys.stderr)
        pos += 1
    return records


def extract_records(
    program: Program,
    cache: PageCache | None = None,
    ignore_cache: bool = False,
    verbose: bool = False,
) -> list[Record]:
    candidates = collect_candidates(program, cache=cache, ignore_cache=ignore_cache, verbose=verbose)
    return resolve_records(candidates, cache=cache, ignore_cache=ignore_cache, verbose=verbose)


# Archive snapshots


def record_to_dict(record: Record) -> dict[str, Any]:
    return {
        "trackNumber": record.track_number,
        "title": record.title,
        "artist": record.artist,
        "album": record.album,
        "url": record.url,
        "date": record.date.strftime(CACHE_DATE_FORMAT) if record.date else None,
        "audioUrl": record.audio_url,
        "imgUrl": record.img_url,
    }


def program_to_dict(program: Program) -> dict[str, Any]:
    return {
        "url": program.url,
        "title": program.title,
        "artist": program.artist,
        "records": None if program.records is None else [record_to_dict(r) for r in program.records],
    }


def archive_to_dict(archive: Archive) -> dict[str, Any]:
    return {"url": archive.url, "programs": [program_to_dict(p) for p in archive.programs]}


def _optional_str(data: dict, key: str) -> str | None:
    value = data.get(key)
    if value is not None and not isinstance(value, str):
        raise CacheLoadError(f"{key} must be a string, got {type(value).__name__}")
    return value


def _required_str(data: dict, key: str) -> str:
    value = _optional_str(data, key)
    if value is None:
        raise CacheLoadError(f"missing {key}")
    return value


def record_from_dict(data: dict) -> Record:
    if not isinstance(data, dict):
        raise CacheLoadError("record must be an object")
    raw_date = _optional_str(data, "date")
    try:
        record_date = datetime.datetime.strptime(raw_date, CACHE_DATE_FORMAT).date() if raw_date else None
    except ValueError as exc:
        raise CacheLoadError(f"bad date {raw_date!r}") from exc
    track_number = data.get("trackNumber", 0)
    if not isinstance(track_number, int) or isinstance(track_number, bool):
        raise CacheLoadError("trackNumber must be an integer")
    return Record(
        track_number=track_number,
        title=_optional_str(data, "title"),
        artist=_optional_str(data, "artist"),
        album=_required_str(data, "album"),
        url=_required_str(data, "url"),
        date=record_date,
        audio_url=_optional_str(data, "audioUrl"),
        img_url=_optional_str(data, "imgUrl"),
    )


def program_from_dict(data: dict) -> Program:
    if not isinstance(data, dict):
        raise CacheLoadError("program must be an object")
    records = data.get("records")
    if records is not None and not isinstance(records, list):
        raise CacheLoadError("records must be a list")
    return Program(
        url=_required_str(data, "url"),
        title=_required_str(data, "title"),
        artist=_optional_str(data, "artist"),
        records=None if records is None else [record_from_dict(r) for r in records],
    )


def archive_from_dict(data: Any) -> Archive:
    if not isinstance(data, dict) or not isinstance(data.get("programs"), list):
        raise CacheLoadError("archive must be an object with a programs list")
    return Archive(url=_required_str(data, "url"), programs=[program_from_dict(p) for p in data["programs"]])


class ArchiveStore:
    def __init__(self, path: Path, label: str = "archive"):
        self.path = path
        self.label = label

    def load(self) -> Archive | None:
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
            return archive_from_dict(data)
        except FileNotFoundError:
            print(f"No {self.label} at {self.path.resolve()}", file=sys.stderr)
        except (OSError, ValueError, CacheLoadError) as exc:
            print(f"Error in reading {self.label} from {self.path.resolve()}: {exc}", file=sys.stderr)
        return None

    def save(self, archive: Archive):
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(archive_to_dict(archive), indent=2, ensure_ascii=False), encoding="utf-8")


def seed_store(base_dir: Path) -> ArchiveStore:
    return ArchiveStore(base_dir / SEED_ARCHIVE_FILE, label="archive")


def programs_store(base_dir: Path) -> ArchiveStore:
    return ArchiveStore(base_dir / PROGRAMS_ARCHIVE_FILE, label="programs archive")


def get_archive(store: ArchiveStore, cache: PageCache | None = None, ignore_cache: bool = False) -> Archive:
    archive = store.load()
    if archive is None:
        print(f"Reading archive from {PROGRAMS_ARCHIVE_URL}", file=sys.stderr)
        archive = Archive(PROGRAMS_ARCHIVE_URL, list_programs(cache=cache, ignore_cache=ignore_cache))
        store.save(archive)
    return archive


def get_programs_archive(store: ArchiveStore) -> Archive | None:
    return store.load()


# Download and tagging


def output_filename(record: Record) -> str:
    return f"{record.track_number}_{url_slug(record.url)}.mp3"


def tag_mp3(path: Path, record: Record, cover: bytes | None = None):
    try:
        tags = ID3(path)
    except ID3NoHeaderError:
        tags = ID3()

    tags.add(TRCK(encoding=3, text=str(record.track_number)))
    if record.title:
        tags.add(TIT2(encoding=3, text=record.title))
    if record.artist:
        tags.add(TPE1(encoding=3, text=record.artist))
    tags.add(TALB(encoding=3, text=record.album))
    tags.add(WOAS(url=record.url))
    if record.date:
        tags.add(TDRC(encoding=3, text=record.date.strftime(TAG_DATE_FORMAT)))
    if cover:
        tags.add(APIC(encoding=3, mime="image/jpeg", type=3, desc="Cover", data=cover))
    tags.save(path, v2_version=4)


def save_mp3(record: Record, directory: Path) -> Path:
    if not record.audio_url:
        raise ValueError(f"Record {record.url} has no audio URL")
    target = directory / output_filename(record)
    if target.exists():
        return target
    partial = target.with_suffix(".part")
    try:
        download_file(record.audio_url, partial)
        cover = None
        if record.img_url:
            try:
                cover = fetch_bytes(record.img_url)
            except FetchError as exc:
                print(f"Warning: no cover for {target.name}: {exc}", file=sys.stderr)
        tag_mp3(partial, record, cover)
        os.replace(partial, target)
    finally:
        if partial.exists():
            partial.unlink()
    return target


def download_program(program: Program, directory: Path) -> list[DownloadResult]:
    program_dir = directory / program.slug
    program_dir.mkdir(exist_ok=True)
    results: list[DownloadResult] = []
    for record in program.records or []:
        try:
            path = save_mp3(record, program_dir)
            results.append(DownloadResult(record, path=path))
            print(path)
        except (ArchiveError, OSError, ValueError) as exc:
            results.append(DownloadResult(record, error=str(exc)))
            print(f"Error: {record.track_number} {record.url}: {exc}", file=sys.stderr)
    return results


# Output


def print_program_list(programs: list[Program], as_json: bool):
    if as_json:
        print(json.dumps([program_to_dict(p) for p in programs], indent=2, ensure_ascii=False))
        return
    try:
        from rich.console import Console
        from rich.table import Table

        table = Table(title="Programs")
        table.add_column("#", justify="right")
        table.add_column("Slug")
        table.add_column("Title")
        table.add_column("Tracks", justify="right")
        for idx, program in enumerate(programs):
            tracks = "-" if program.records is None else str(len(program.records))
            table.add_row(str(idx), program.slug, program.title, tracks)
        Console().print(table)
    except Exception:
        for idx, program in enumerate(programs):
            print(f"{idx}. {program.slug} - {program.title}")


def print_record_list(program: Program, as_json: bool):
    records = program.records or []
    if as_json:
        print(json.dumps([record_to_dict(r) for r in records], indent=2, ensure_ascii=False))
        return
    try:
        from rich.console import Console
        from rich.table import Table

        table = Table(title=f"{program.title} ({len(records)} tracks)")
        table.add_column("#", justify="right")
        table.add_column("Date")
        table.add_column("Title")
        table.add_column("Audio URL")
        for record in records:
            table.add_row(
                str(record.track_number),
                record.date.strftime(CACHE_DATE_FORMAT) if record.date else "",
                record.title or "",
                record.audio_url or "",
            )
        Console().print(table)
    except Exception:
        for record in records:
            print(f"{record.track_number}. {record.title} ({record.date}) {record.audio_url}")


# CLI


def scan_program(program: Program, args, cache: PageCache, spinner: Spinner | None = None) -> Program:
    if program.scanned and not args.rescan:
        return program
    if spinner is not None:
        spinner.update(f"Scanning {program.slug}")
        program.records = extract_records(program, cache=cache, ignore_cache=args.refresh, verbose=args.verbose)
        return program
    with Spinner(f"Scanning {program.slug}", enabled=not args.verbose):
        program.records = extract_records(program, cache=cache, ignore_cache=args.refresh, verbose=args.verbose)
    return program


def run_list(args, cache: PageCache) -> int:
    with Spinner("Fetching programs archive", enabled=not args.verbose):
        archive = get_archive(seed_store(args.archive_dir), cache=cache, ignore_cache=args.refresh)
    print_program_list(archive.programs, args.json)
    return 0


def run_scan(args, cache: PageCache) -> int:
    store = programs_store(args.archive_dir)
    archive = get_programs_archive(store)
    if archive is None:
        archive = get_archive(seed_store(args.archive_dir), cache=cache, ignore_cache=args.refresh)

    if args.program == "all":
        total = len(archive.programs)
        with Spinner(f"Scanning {total} programs", enabled=not args.verbose) as spinner:
            for idx, program in enumerate(archive.programs):
                spinner.update(f"[{idx + 1}/{total}] {program.slug}")
                scan_program(program, args, cache, spinner=spinner)
                # Saved per program so a later failure keeps the programs already scanned.
                store.save(archive)
                if not args.json:
                    print(f"{idx}. {program.slug} - {program.title}")
                    print(program.url)
                    print_record_list(program, False)
        if args.json:
            print_program_list(archive.programs, True)
        return 0

    program = archive.find(args.program)
    if program is None:
        print(f"No program {args.program} in programs archive", file=sys.stderr)
        return 2
    scan_program(program, args, cache)
    store.save(archive)
    print_record_list(program, args.json)
    return 0


def run_download(args) -> int:
    root = Path(args.path)
    if not root.exists():
        print(f"Path {args.path} does not exist", file=sys.stderr)
        return 2
    archive = get_programs_archive(programs_store(args.archive_dir))
    if archive is None:
        print("Get programs archive at first", file=sys.stderr)
        return 2
    program = archive.find(args.program)
    if program is None:
        print(f"No program {args.program} in programs archive", file=sys.stderr)
        return 2
    if not program.records:
        print(f"Program {program.title} doesn't have any records. Scan it first", file=sys.stderr)
        return 2
    results = download_program(program, root.resolve())
    failed = [r for r in results if not r.ok]
    if failed:
        print(f"{len(failed)} of {len(results)} tracks failed", file=sys.stderr)
        return 1
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Crawl the Orpheus radio programs archive and download programs as tagged MP3s.",
        epilog=(
            "Examples:\n"
            "  orpheus_archive_dl.py                      list all programs\n"
            "  orpheus_archive_dl.py eurofest             scan one program into programsarchive.json\n"
            "  orpheus_archive_dl.py all                  scan every program\n"
            "  orpheus_archive_dl.py eurofest ~/Music     download a scanned program\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("program", nargs="?", help="Program slug (last URL segment), or 'all' to scan everything")
    parser.add_argument("path", nargs="?", help="Download the scanned program into PATH/PROGRAM")
    parser.add_argument("--archive-dir", type=Path, default=Path.cwd(), help="Directory holding the JSON archives")
    parser.add_argument("--cache-dir", type=Path, help="Page cache directory")
    parser.add_argument("--cache-ttl", type=int, default=3600, help="Page cache TTL in seconds (default: 3600)")
    parser.add_argument("--refresh", action="store_true", help="Bypass the page cache")
    parser.add_argument("--rescan", action="store_true", help="Re-extract programs that are already scanned")
    parser.add_argument("--json", action="store_true", help="Print machine-readable JSON output")
    parser.add_argument("--verbose", action="store_true", help="Print per-page and per-track progress")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    if args.path and args.program == "all":
        print("Error: download one program at a time", file=sys.stderr)
        return 2

    cache_dir = args.cache_dir or Path(__file__).resolve().parent / ".orpheus_cache"
    cache = PageCache(cache_dir, ttl_seconds=args.cache_ttl)

    try:
        if args.program is None:
            return run_list(args, cache)
        if args.path is None:
            return run_scan(args, cache)
        return run_download(args)
    except ArchiveError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
