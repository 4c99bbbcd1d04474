"""Utility that launches a sample MongoDB Docker container for doclink."""

from __future__ import annotations

import argparse
import json
import subprocess
import sys
import threading
import time
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from doclink.config import CONFIG_FILE, ConnectionOptions, DoclinkConfig, load_config, save_config
from doclink.connection import Connection
from doclink.documents import Document
from doclink.drivers import PymongoDriver

DEFAULT_CONTAINER = "doclink-sample-db"
DEFAULT_PORT = 27117
DEFAULT_DB = "doclink_demo"
DEFAULT_CONNECTION_ID = "docker-sample"
DOCKER_IMAGE = "mongo:7"
SCHEMA_FILE = CONFIG_FILE.parent / "sample-schema.json"

SAMPLE_SCHEMA = {
    "employee": {
        "login": {"username": "String"},
        "name": "String",
        "score": "Number",
        "teams": ["ObjectId"],
        "deleted": {"isDeleted": "Boolean"},
    },
}

SAMPLE_EMPLOYEES = (
    {"login": {"username": "anna"}, "name": "Anna", "score": 12, "teams": []},
    {"login": {"username": "ben"}, "name": "Ben", "score": 7, "teams": []},
    {"login": {"username": "cara"}, "name": "Cara", "score": 19, "teams": []},
)


def run(cmd: list[str], *, check: bool = True, **kwargs) -> subprocess.CompletedProcess[str]:
    print("$", " ".join(cmd))
    return subprocess.run(cmd, check=check, text=True, **kwargs)


def container_exists(name: str) -> bool:
    result = subprocess.run(
        ["docker", "ps", "-a", "--filter", f"name={name}", "--format", "{{.ID}}"],
        text=True,
        capture_output=True,
    )
    return bool(result.stdout.strip())


def start_container(name: str, port: int) -> None:
    if container_exists(name):
        print(f"Container '{name}' already exists. Reusing it.")
        run(["docker", "start", name], check=False)
    else:
        run(["docker", "run", "-d", "--name", name, "-p", f"{port}:27017", DOCKER_IMAGE])
    wait_for_start(name)


def wait_for_start(name: str, retries: int = 15, delay: float = 1.0) -> None:
    for _ in range(retries):
        result = subprocess.run(
            ["docker", "exec", name, "mongosh", "--quiet", "--eval", "db.runCommand({ ping: 1 }).ok"],
            text=True,
            capture_output=True,
        )
        if result.returncode == 0 and result.stdout.strip() == "1":
            return
        time.sleep(delay)
    print("Warning: database did not report ready state; continuing anyway.")


def seed_data(credentials: str) -> None:
    driver = PymongoDriver()
    connection = Connection(credentials, SAMPLE_SCHEMA, id=DEFAULT_CONNECTION_ID, driver=driver)
    try:
        error = _wait(connection.connect)
        if error is not None:
            raise SystemExit(f"Failed to connect to sample database: {error}")
        model = connection.model("employee")
        for employee in SAMPLE_EMPLOYEES:
            document = Document({**employee, "deleted": {"isDeleted": False}}, model=model)
            save_error = _wait(lambda callback: document.save(lambda err: callback(err, connection)))
            if save_error is not None:
                raise SystemExit(f"Failed to seed employee '{employee['name']}': {save_error}")
        print(f"Seeded {len(SAMPLE_EMPLOYEES)} employee documents.")
        _wait(lambda callback: connection.disconnect(lambda err: callback(err, connection)))
    finally:
        driver.shutdown()


def _wait(start, timeout: float = 10.0) -> BaseException | None:
    done = threading.Event()
    outcome: list[BaseException | None] = []

    def _callback(error: BaseException | None, _connection: Connection) -> None:
        outcome.append(error)
        done.set()

    start(_callback)
    if not done.wait(timeout):
        raise SystemExit("Timed out waiting for the sample database.")
    return outcome[0]


def update_config(credentials: str) -> None:
    SCHEMA_FILE.parent.mkdir(parents=True, exist_ok=True)
    SCHEMA_FILE.write_text(json.dumps(SAMPLE_SCHEMA, indent=2) + "\n")
    config = load_config()
    if config.options_for(DEFAULT_CONNECTION_ID) is not None:
        print(f"Connection '{DEFAULT_CONNECTION_ID}' already present in config; leaving as-is.")
        return
    connections = list(config.connections)
    connections.append(
        ConnectionOptions(id=DEFAULT_CONNECTION_ID, schema=str(SCHEMA_FILE), credentials=credentials)
    )
    save_config(DoclinkConfig(connections=connections, default_connection=config.default_connection))
    print(f"Added '{DEFAULT_CONNECTION_ID}' connection to {CONFIG_FILE}.")


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--container", default=DEFAULT_CONTAINER, help="Docker container name")
    parser.add_argument("--port", type=int, default=DEFAULT_PORT, help="Host port to expose MongoDB on")
    parser.add_argument("--database", default=DEFAULT_DB, help="Database name to seed")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv or sys.argv[1:])
    credentials = f"mongodb://localhost:{args.port}/{args.database}"
    try:
        start_container(args.container, args.port)
    except FileNotFoundError:
        print("Docker is not installed or not on PATH.")
        return 1
    seed_data(credentials)
    update_config(credentials)
    print(f"Sample database is ready. Connect using the '{DEFAULT_CONNECTION_ID}' connection or {credentials}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
