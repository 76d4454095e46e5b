import datetime as dt


def now_iso() -> str:
    return dt.datetime.now(dt.timezone.utc).replace(microsecond=0, tzinfo=None).isoformat() + "Z"


def today() -> dt.date:
    return dt.datetime.now(dt.timezone.utc).date()
