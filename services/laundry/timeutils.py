# ============================================================
# timeutils.py : Conversions de dates
# ------------------------------------------------------------
# En Python : toujours des datetimes UTC avec tzinfo.
# Entrée : si pas de tz, on suppose la timezone locale.
# Sortie : affichage en heure locale (ISO 8601 avec offset).
# La colonne SQL, elle, est décrite par models.UTCTimestamp.
# ============================================================
from datetime import date, datetime, time, timezone

from config import LOCAL_TZ


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=LOCAL_TZ)
    return dt.astimezone(timezone.utc)


def to_local(dt):
    if dt is None:
        return None
    # valeur sans tz = UTC
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(LOCAL_TZ).isoformat()


def local_day(dt: datetime) -> date:
    """Jour local (calendrier) d'un instant UTC."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(LOCAL_TZ).date()


def local_time_to_utc(day: date, t: time) -> datetime:
    return to_utc(datetime.combine(day, t, tzinfo=LOCAL_TZ))
