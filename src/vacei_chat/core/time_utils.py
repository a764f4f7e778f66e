from datetime import datetime, timezone


def now_iso_utc_ms() -> str:
    return (
        datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace(
            "+00:00", "Z"
        )
    )


def now_epoch_ms() -> int:
    return int(datetime.now(timezone.utc).timestamp() * 1000)


now_iso = now_iso_utc_ms


__all__ = ["now_epoch_ms", "now_iso", "now_iso_utc_ms"]
