"""
Stop coordinate index and resolver.

The static GTFS stop list is downloaded at most once per refresh window,
filtered to quays inside the service area, kept as a dict for synchronous
lookups and loaded into DuckDB for bounding-box and name queries.
Quays missing from the dataset are looked up in batches against the
journey planner and cached for the process lifetime.
"""

import asyncio
import io
import logging
import time
import zipfile
from typing import Callable, Dict, Iterable, List, Optional

import httpx
import pandas as pd

import config
from database_connector import DatabaseConnector, DatabaseError
from models.domain_models import BoundingBox, Coordinates, QuayRecord
from utils.upstream import UPSTREAM_FAILURES, UpstreamError, fetch_with_status_backoff
from utils.validation import filter_quay_ids

logger = logging.getLogger(__name__)

STOPS_COLUMNS = ["stop_id", "stop_name", "stop_lat", "stop_lon"]

SERVICE_AREA = BoundingBox(
    min_lat=config.BOUNDS_MIN_LAT,
    min_lon=config.BOUNDS_MIN_LON,
    max_lat=config.BOUNDS_MAX_LAT,
    max_lon=config.BOUNDS_MAX_LON,
)


def read_stops_csv(source, bounds: BoundingBox = SERVICE_AREA) -> pd.DataFrame:
    """
    Read a GTFS stops.txt into a frame of in-area quays.

    Args:
        source: Path or file-like object holding stops.txt
        bounds: Area to keep

    Returns:
        DataFrame with columns quay_id, name, lat, lon
    """
    df = pd.read_csv(
        source,
        usecols=lambda c: c.strip().lower() in STOPS_COLUMNS,
        dtype={"stop_id": str, "stop_name": str},
    )
    df.columns = [c.strip().lower() for c in df.columns]

    missing = set(STOPS_COLUMNS) - set(df.columns)
    if missing:
        raise ValueError(f"stops.txt is missing columns: {sorted(missing)}")

    df["stop_lat"] = pd.to_numeric(df["stop_lat"], errors="coerce")
    df["stop_lon"] = pd.to_numeric(df["stop_lon"], errors="coerce")
    df = df.dropna(subset=["stop_id", "stop_lat", "stop_lon"])
    df["stop_id"] = df["stop_id"].str.strip()
    df = df[df["stop_id"].str.match(config.QUAY_ID_PATTERN)]
    df = df[
        df["stop_lat"].between(bounds.min_lat, bounds.max_lat)
        & df["stop_lon"].between(bounds.min_lon, bounds.max_lon)
    ]

    return pd.DataFrame({
        "quay_id": df["stop_id"],
        "name": df["stop_name"].fillna("").str.strip(),
        "lat": df["stop_lat"].astype(float),
        "lon": df["stop_lon"].astype(float),
    }).drop_duplicates(subset="quay_id", keep="last").reset_index(drop=True)


def read_stops_zip(content: bytes, bounds: BoundingBox = SERVICE_AREA) -> pd.DataFrame:
    """Extract stops.txt from a GTFS zip archive and read it."""
    with zipfile.ZipFile(io.BytesIO(content)) as archive:
        if "stops.txt" not in archive.namelist():
            raise ValueError("stops.txt missing from GTFS archive")
        with archive.open("stops.txt") as handle:
            return read_stops_csv(handle, bounds)


class QuayCoordinateIndex:
    """Read-mostly index of quays: dict for id lookups, DuckDB for area and name queries."""

    TABLE = "quays"

    def __init__(self, db: Optional[DatabaseConnector] = None):
        self.db = db or DatabaseConnector()
        self._records: Dict[str, QuayRecord] = {}

    def __len__(self):
        return len(self._records)

    def __contains__(self, quay_id):
        return quay_id in self._records

    def load(self, df: pd.DataFrame) -> None:
        """Replace the index contents with the given quay frame."""
        records = {
            row.quay_id: QuayRecord(row.quay_id, row.name, float(row.lat), float(row.lon))
            for row in df.itertuples(index=False)
        }
        self.db.replace_table(self.TABLE, df[["quay_id", "name", "lat", "lon"]])
        self._records = records

    def get(self, quay_id: str) -> Optional[Coordinates]:
        record = self._records.get(quay_id)
        return record.coordinates if record else None

    def record(self, quay_id: str) -> Optional[QuayRecord]:
        return self._records.get(quay_id)

    def within_bbox(self, bbox: BoundingBox, limit: int) -> List[QuayRecord]:
        if not self._records:
            return []
        df = self.db.execute_df(
            f"""
            SELECT quay_id, name, lat, lon
            FROM {self.TABLE}
            WHERE lat BETWEEN ? AND ? AND lon BETWEEN ? AND ?
            ORDER BY quay_id
            LIMIT ?
            """,
            [bbox.min_lat, bbox.max_lat, bbox.min_lon, bbox.max_lon, limit],
        )
        return [QuayRecord(r.quay_id, r.name, float(r.lat), float(r.lon)) for r in df.itertuples(index=False)]

    def search(self, query_text: str, limit: int) -> List[QuayRecord]:
        """Case-insensitive substring search ranked exact, then prefix, then contains."""
        if not self._records:
            return []
        needle = query_text.lower()
        df = self.db.execute_df(
            f"""
            WITH scored AS (
                SELECT
                    quay_id, name, lat, lon,
                    CASE
                        WHEN LOWER(name) = ? THEN 100
                        WHEN LOWER(name) LIKE ? THEN 90
                        ELSE 80
                    END AS relevance_score
                FROM {self.TABLE}
                WHERE LOWER(name) LIKE ?
            )
            SELECT quay_id, name, lat, lon
            FROM scored
            ORDER BY relevance_score DESC, name, quay_id
            LIMIT ?
            """,
            [needle, f"{needle}%", f"%{needle}%", limit],
        )
        return [QuayRecord(r.quay_id, r.name, float(r.lat), float(r.lon)) for r in df.itertuples(index=False)]


def _batches(items: List[str], size: int) -> Iterable[List[str]]:
    for i in range(0, len(items), size):
        yield items[i:i + size]


class StopCoordinateResolver:
    """
    Resolves quay ids to coordinates.

    ``get`` is a synchronous lookup (static index first, then quays found
    through earlier remote lookups). ``resolve_many`` fills the gaps
    remotely.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        planner,
        index: Optional[QuayCoordinateIndex] = None,
        stops_url: str = config.GTFS_STOPS_URL,
        ttl: float = config.GTFS_CACHE_TTL_S,
        batch_size: int = config.QUAY_BATCH_SIZE,
        concurrency: int = config.LOOKUP_CONCURRENCY,
        status_delays: Iterable[float] = config.STATUS_RETRY_DELAYS_S,
        geocoder_enabled: bool = config.ENABLE_GEOCODER_FALLBACK,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.client = client
        self.planner = planner
        self.index = index if index is not None else QuayCoordinateIndex()
        self.stops_url = stops_url
        self.ttl = ttl
        self.batch_size = batch_size
        self.concurrency = concurrency
        self.status_delays = tuple(status_delays)
        self.geocoder_enabled = geocoder_enabled
        self.clock = clock

        self._remote: Dict[str, Coordinates] = {}
        self._loaded_at: Optional[float] = None
        self._failed_at: Optional[float] = None
        self._inflight: Optional[asyncio.Task] = None
        self.last_error: Optional[str] = None

    def get(self, quay_id: str) -> Optional[Coordinates]:
        return self.index.get(quay_id) or self._remote.get(quay_id)

    def name(self, quay_id: str) -> str:
        record = self.index.record(quay_id)
        return record.name if record else ""

    @property
    def age_seconds(self) -> Optional[float]:
        if self._loaded_at is None:
            return None
        return self.clock() - self._loaded_at

    async def ensure_loaded(self) -> bool:
        """
        Make sure the static index is loaded and younger than the TTL.

        Concurrent callers share a single download. A failed download keeps
        the previous index.

        Returns:
            True when the index holds data
        """
        if self._loaded_at is not None and self.clock() - self._loaded_at < self.ttl:
            return len(self.index) > 0
        if self._failed_at is not None and self.clock() - self._failed_at < config.RATE_LIMIT_COOLDOWN_S:
            return len(self.index) > 0

        if self._inflight is None or self._inflight.done():
            self._inflight = asyncio.create_task(self._load())
        await asyncio.shield(self._inflight)
        return len(self.index) > 0

    async def _load(self) -> None:
        try:
            response = await fetch_with_status_backoff(
                self.client, "GET", self.stops_url, delays=self.status_delays,
                timeout=config.GTFS_TIMEOUT_S, retries=2,
            )
            if response.status_code >= 400:
                raise UpstreamError(f"GTFS {response.status_code}", status_code=response.status_code)
            # national stop list, parsed off the event loop
            df = await asyncio.to_thread(read_stops_zip, response.content)
            self.index.load(df)
            self._loaded_at = self.clock()
            self.last_error = None
            self._failed_at = None
            logger.info(f"Stop index loaded: {len(self.index)} quays")
        except (*UPSTREAM_FAILURES, ValueError, zipfile.BadZipFile, DatabaseError) as e:
            self.last_error = str(e)
            self._failed_at = self.clock()
            logger.warning(f"Stop index load failed, keeping {len(self.index)} quays: {e}")

    async def resolve_many(self, quay_ids: Iterable[str], names: Optional[Dict[str, str]] = None) -> Dict[str, Coordinates]:
        """
        Resolve many quay ids, looking up unknown ones remotely.

        Args:
            quay_ids: Ids to resolve; malformed ids are ignored
            names: Optional display names, used by the geocoder fallback

        Returns:
            Mapping of every resolvable id to (lat, lon)
        """
        ids = filter_quay_ids(list(quay_ids))
        missing = [quay_id for quay_id in ids if self.get(quay_id) is None]

        if missing:
            semaphore = asyncio.Semaphore(self.concurrency)

            async def run(batch: List[str]) -> None:
                async with semaphore:
                    try:
                        self._remote.update(await self.planner.quay_coordinates(batch))
                    except UPSTREAM_FAILURES as e:
                        logger.warning(f"Quay lookup failed for {len(batch)} quays: {e}")

            await asyncio.gather(*(run(batch) for batch in _batches(missing, self.batch_size)))

            if self.geocoder_enabled and names:
                for quay_id in missing:
                    if self.get(quay_id) is None and names.get(quay_id):
                        coords = await self.geocode(names[quay_id])
                        if coords:
                            self._remote[quay_id] = coords

        result = {}
        for quay_id in ids:
            coords = self.get(quay_id)
            if coords is not None:
                result[quay_id] = coords
        return result

    async def geocode(self, name: str) -> Optional[Coordinates]:
        """Name search fallback; returns None when disabled or nothing matches."""
        if not self.geocoder_enabled or not name:
            return None
        try:
            return await self.planner.geocode(name)
        except UPSTREAM_FAILURES as e:
            logger.warning(f"Geocoder lookup failed for {name!r}: {e}")
            return None
