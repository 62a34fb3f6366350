"""
Maintenance of the departure-board response cache: invalidation,
expired-entry cleanup and a health report for the system endpoints.
"""

from typing import Any, Dict, List, Optional

from utils.caching import ResponseCache, get_response_cache

DEPARTURES_PREFIX = "departures:"


def departures_cache_key(stop_id: str, limit: int) -> str:
    return f"{DEPARTURES_PREFIX}{stop_id}:{limit}"


class CacheManager:
    def __init__(self, cache: Optional[ResponseCache] = None):
        self.cache = cache if cache is not None else get_response_cache()

    def invalidate_departure_cache(self, stop_id: Optional[str] = None) -> int:
        """
        Drop cached departure boards.

        Args:
            stop_id: One stop (every limit), or None for all stops

        Returns:
            Number of boards dropped
        """
        prefix = f"{DEPARTURES_PREFIX}{stop_id}:" if stop_id else DEPARTURES_PREFIX
        return self.cache.invalidate_prefix(prefix)

    def invalidate_all_cache(self) -> None:
        self.cache.clear()

    def get_cache_health(self) -> Dict[str, Any]:
        stats = self.cache.get_stats()

        # 0.8 hit rate = 100 score
        health_score = min(100, stats["hit_rate"] * 125)
        if health_score >= 80:
            health_status = "excellent"
        elif health_score >= 60:
            health_status = "good"
        elif health_score >= 40:
            health_status = "fair"
        else:
            health_status = "poor"

        return {
            "health_score": round(health_score, 2),
            "health_status": health_status,
            "statistics": stats,
            "recommendations": self._recommendations(stats, self.cache.expired_count()),
        }

    @staticmethod
    def _recommendations(stats: Dict[str, Any], expired: int) -> List[str]:
        recommendations = []

        if stats["total_requests"] > 100 and stats["hit_rate"] < 0.3:
            recommendations.append("Low departure cache hit rate. Clients may be polling many different stops.")
        if stats["cache_size"] and expired > stats["cache_size"] * 0.2:
            recommendations.append("High number of expired entries. Consider running cache cleanup.")
        if stats["evictions"]:
            recommendations.append("Boards are being evicted before expiry. Consider raising RESPONSE_CACHE_MAX_ENTRIES.")

        return recommendations or ["Cache is performing well. No immediate optimizations needed."]

    def cleanup_expired_entries(self) -> int:
        return self.cache.cleanup_expired()


_cache_manager = CacheManager()


def get_cache_manager() -> CacheManager:
    return _cache_manager


def get_cache_health() -> Dict[str, Any]:
    return _cache_manager.get_cache_health()


def cleanup_expired_cache() -> int:
    return _cache_manager.cleanup_expired_entries()
