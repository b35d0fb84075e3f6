"""
Fetch the script body of a scripted synthetic monitor and save it as a .js file.
"""
import os
from dataclasses import dataclass
from pathlib import Path

SCRIPT_QUERY = """
query($accountId: Int!, $guid: EntityGuid!) {
  actor {
    account(id: $accountId) {
      synthetics {
        script(monitorGuid: $guid) {
          text
        }
      }
    }
  }
}
"""

PATH_SEPARATORS = ("/", "\\")


class ScriptFetchError(Exception):
    pass


class InvalidScriptShape(ScriptFetchError):
    """The script response did not unwrap to a string."""


@dataclass(frozen=True)
class ScriptTask:
    account_id: int
    guid: str
    file_name: str
    name: str = ""


def sanitize_name(name: str) -> str:
    for sep in PATH_SEPARATORS:
        name = name.replace(sep, "_")
    return name


def unwrap(value):
    # account -> synthetics -> script -> text, without naming the levels
    while isinstance(value, dict):
        if not value:
            return value
        value = next(iter(value.values()))
    return value


def fetch_script(client, account_id: int, guid: str) -> str:
    response = client.query(SCRIPT_QUERY, {"accountId": account_id, "guid": guid})
    data = response.get("data") if isinstance(response, dict) else None
    text = unwrap(data)
    if not isinstance(text, str):
        errors = response.get("errors") if isinstance(response, dict) else None
        detail = f"; errors: {errors}" if errors else ""
        raise InvalidScriptShape(f"Script for monitor {guid} is not text: {text!r}{detail}")
    return text


def save_script(script_dir, task: ScriptTask, text: str) -> Path:
    script_dir = Path(script_dir)
    script_dir.mkdir(parents=True, exist_ok=True)
    filename = script_dir / f"{task.file_name}.js"
    partial = script_dir / f"{task.file_name}.js.part"
    try:
        # newline='' keeps the script byte-for-byte
        with open(partial, "w", encoding="utf-8", newline="") as file:
            file.write(text)
        os.replace(partial, filename)
    except (OSError, ValueError):
        if partial.exists():
            partial.unlink()
        raise
    return filename


def fetch_and_save(client, script_dir, task: ScriptTask) -> Path:
    return save_script(script_dir, task, fetch_script(client, task.account_id, task.guid))
