"""
Synthetic monitor inventory: the entitySearch query and the flattening of
each monitor's tags into one CSV-ready record.
"""
from dataclasses import dataclass
from typing import Optional, Tuple

MONITOR_QUERY = """
{
  actor {
    entitySearch(query: "domain = 'SYNTH' AND type = 'MONITOR'") {
      results {
        entities {
          ... on SyntheticMonitorEntityOutline {
            name
            accountId
            guid
            monitorType
            monitoredUrl
            period
            tags {
              key
              values
            }
          }
        }
      }
    }
  }
}
"""

# CSV column order of the manifest
MANIFEST_FIELDS = [
    "account",
    "account_id",
    "name",
    "monitor_type",
    "monitored_url",
    "period",
    "monitor_status",
    "guid",
]

SCRIPT_TYPE_PREFIX = "SCRIPT"


class MonitorShapeError(Exception):
    """The entitySearch response or one of its entities is not shaped as expected."""


@dataclass(frozen=True)
class Tag:
    key: str
    values: Tuple[str, ...]


@dataclass(frozen=True)
class SyntheticMonitor:
    account_id: int
    monitor_type: str
    monitored_url: Optional[str]
    name: str
    period: int
    guid: str
    tags: Tuple[Tag, ...] = ()

    @property
    def is_scripted(self):
        return self.monitor_type.startswith(SCRIPT_TYPE_PREFIX)


@dataclass(frozen=True)
class MonitorRecord:
    account: Optional[str]
    account_id: int
    name: str
    monitor_type: str
    monitored_url: Optional[str]
    period: int
    monitor_status: Optional[str]
    guid: str

    def as_row(self):
        return {field: getattr(self, field) for field in MANIFEST_FIELDS}


def _required(entity, field, kind):
    value = entity.get(field)
    # bool is an int subclass; a flag is never a valid id or period
    if value is None or isinstance(value, bool) or not isinstance(value, kind):
        label = entity.get("name") or entity.get("guid") or "<unnamed>"
        raise MonitorShapeError(f"Monitor '{label}' has missing or invalid field '{field}': {value!r}")
    return value


def parse_monitor(entity) -> SyntheticMonitor:
    if not isinstance(entity, dict):
        raise MonitorShapeError(f"Expected a monitor object, got {entity!r}")

    monitored_url = entity.get("monitoredUrl")
    if monitored_url is not None and not isinstance(monitored_url, str):
        raise MonitorShapeError(f"Monitor '{entity.get('name')}' has invalid monitoredUrl: {monitored_url!r}")

    tags = []
    for tag in entity.get("tags") or []:
        if not isinstance(tag, dict) or not isinstance(tag.get("key"), str):
            raise MonitorShapeError(f"Monitor '{entity.get('name')}' has an invalid tag: {tag!r}")
        values = tag.get("values")
        if values is None:
            values = []
        if not isinstance(values, list) or not all(isinstance(v, str) for v in values):
            raise MonitorShapeError(
                f"Monitor '{entity.get('name')}' has invalid values for tag '{tag['key']}': {values!r}")
        tags.append(Tag(tag["key"], tuple(values)))

    return SyntheticMonitor(
        account_id=_required(entity, "accountId", int),
        monitor_type=_required(entity, "monitorType", str),
        monitored_url=monitored_url,
        name=_required(entity, "name", str),
        period=_required(entity, "period", int),
        guid=_required(entity, "guid", str),
        tags=tuple(tags),
    )


def parse_monitors(response):
    try:
        entities = response["data"]["actor"]["entitySearch"]["results"]["entities"]
    except (KeyError, TypeError):
        errors = response.get("errors") if isinstance(response, dict) else None
        raise MonitorShapeError(f"Unexpected NerdGraph response for monitor search: {errors or response!r}")

    if not isinstance(entities, list):
        raise MonitorShapeError(f"Expected a list of monitors, got {entities!r}")

    return [parse_monitor(e) for e in entities]


def fetch_monitors(client):
    """Run the monitor search and return the parsed monitors in response order."""
    return parse_monitors(client.query(MONITOR_QUERY))


def to_record(monitor: SyntheticMonitor) -> MonitorRecord:
    account = None
    monitor_status = None
    for tag in monitor.tags:
        if not tag.values:
            continue
        if tag.key == "account" and account is None:
            account = tag.values[0]
        elif tag.key == "monitorStatus" and monitor_status is None:
            monitor_status = tag.values[0]

    return MonitorRecord(
        account=account,
        account_id=monitor.account_id,
        name=monitor.name,
        monitor_type=monitor.monitor_type,
        monitored_url=monitor.monitored_url,
        period=monitor.period,
        monitor_status=monitor_status,
        guid=monitor.guid,
    )
