from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from typing import Any, Protocol

from shiftops.models import LocationStatus
from shiftops.settings import Settings, get_settings

logger = logging.getLogger("shiftops.location")


@dataclass(frozen=True, slots=True)
class LocationSample:
    lat: float | None = None
    lng: float | None = None
    accuracy_m: float | None = None
    status: LocationStatus = LocationStatus.UNKNOWN

    @property
    def has_coordinates(self) -> bool:
        return self.lat is not None and self.lng is not None


UNKNOWN_LOCATION = LocationSample()


class LocationCaptureAdapter(Protocol):
    def capture(self) -> LocationSample: ...


def _coerce_status(raw: LocationStatus | str | None) -> LocationStatus:
    if isinstance(raw, LocationStatus):
        return raw
    normalized = (raw or "").strip().lower()
    try:
        return LocationStatus(normalized)
    except ValueError:
        return LocationStatus.UNKNOWN


def _coerce_float(value: Any) -> float | None:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def normalize_location_sample(
    *,
    lat: Any = None,
    lng: Any = None,
    accuracy_m: Any = None,
    status: LocationStatus | str | None = None,
) -> LocationSample:
    resolved_status = _coerce_status(status)
    lat_value = _coerce_float(lat)
    lng_value = _coerce_float(lng)
    if lat_value is not None and not -90.0 <= lat_value <= 90.0:
        lat_value = None
    if lng_value is not None and not -180.0 <= lng_value <= 180.0:
        lng_value = None

    if resolved_status == LocationStatus.CAPTURED and (lat_value is None or lng_value is None):
        return LocationSample(status=LocationStatus.UNAVAILABLE)
    if resolved_status != LocationStatus.CAPTURED:
        # Coordinates are only meaningful for a successful capture.
        return LocationSample(status=resolved_status)

    return LocationSample(
        lat=lat_value,
        lng=lng_value,
        accuracy_m=_coerce_float(accuracy_m),
        status=LocationStatus.CAPTURED,
    )


def capture_location(
    adapter: LocationCaptureAdapter,
    *,
    timeout_seconds: float | None = None,
    settings: Settings | None = None,
) -> LocationSample:
    """Run a capture adapter, never waiting longer than ``timeout_seconds``.

    The timeout defaults to ``location_capture_timeout_seconds``. Failures
    degrade to a recorded status instead of raising.
    """
    if timeout_seconds is None:
        timeout_seconds = (settings or get_settings()).location_capture_timeout_seconds
    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="location-capture")
    future = executor.submit(adapter.capture)
    try:
        sample = future.result(timeout=max(0.0, timeout_seconds))
    except FutureTimeoutError:
        logger.warning("location_capture_timeout", extra={"timeout_seconds": timeout_seconds})
        return LocationSample(status=LocationStatus.TIMEOUT)
    except Exception as exc:
        logger.warning("location_capture_failed", extra={"error": str(exc)[:500]})
        return LocationSample(status=LocationStatus.UNAVAILABLE)
    finally:
        executor.shutdown(wait=False, cancel_futures=True)

    if not isinstance(sample, LocationSample):
        return LocationSample(status=LocationStatus.UNKNOWN)
    return normalize_location_sample(
        lat=sample.lat,
        lng=sample.lng,
        accuracy_m=sample.accuracy_m,
        status=sample.status,
    )
