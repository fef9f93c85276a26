from __future__ import annotations

import os
from datetime import datetime, timedelta
from textwrap import dedent

from airflow import DAG
from airflow.providers.docker.operators.docker import DockerOperator
from docker.types import Mount

DEFAULT_ARGS = {
    "owner": "inventory-crawler",
    "depends_on_past": False,
    "email_on_failure": False,
    "email_on_retry": False,
    "retries": 1,
    "retry_delay": timedelta(minutes=15),
}

COMPOSE_PROJECT = os.environ.get("COMPOSE_PROJECT_NAME", "hotel-inventory-watch")
DOCKER_NETWORK = f"{COMPOSE_PROJECT}_default"
CRAWLER_IMAGE = os.environ.get("CRAWLER_IMAGE", "hotel-inventory-watch:latest")
DATA_MOUNT = Mount(target="/app/data", source="inventory_data", type="volume")

ENV_KEYS = [
    "INVENTORY_API_BASE_URL",
    "INVENTORY_APPLICATION_ID",
    "INVENTORY_API_KEY",
    "INVENTORY_API_SOURCE",
    "CRAWL_CITIES",
    "CRAWL_BATCH_SIZE",
    "SEARCH_DAYS",
    "RATE_LIMIT_DELAY_SECONDS",
    "LOG_LEVEL",
]

ENVIRONMENT = {key: value for key in ENV_KEYS if (value := os.environ.get(key))}

# Fails the task when the crawl left no fresh observations behind
OBSERVATION_CHECK_SCRIPT = dedent(
    """
from datetime import datetime, timedelta, timezone
from storage import db

conn = db.connect()
since = datetime.now(timezone.utc) - timedelta(hours=6)
counts = {
    "entities": len(db.list_active_entities(conn)),
    "observations": len(db.fetch_observations_since(conn, since)),
}
conn.close()

assert counts["entities"] > 0, "No active hotels tracked"
assert counts["observations"] > 0, "No observations collected in the last 6 hours"
print(counts)
    """
).strip()


def _crawler_task(task_id: str, command: list[str]) -> DockerOperator:
    return DockerOperator(
        task_id=task_id,
        image=CRAWLER_IMAGE,
        command=command,
        docker_url="unix://var/run/docker.sock",
        auto_remove=True,
        network_mode=DOCKER_NETWORK,
        environment=ENVIRONMENT,
        mounts=[DATA_MOUNT],
        mount_tmp_dir=False,
        do_xcom_push=False,
    )


with DAG(
    dag_id="crawl_full_daily",
    description="Full hotel crawl, observation check and price analysis through the job CLI",
    schedule="0 5 * * *",
    start_date=datetime(2025, 1, 1),
    catchup=False,
    default_args=DEFAULT_ARGS,
    max_active_runs=1,
    tags=["hotel-inventory", "crawl"],
) as dag:

    full_crawl = _crawler_task("full_crawl", ["python", "-m", "jobs", "run", "full"])
    observation_check = _crawler_task(
        "observation_check", ["python", "-c", OBSERVATION_CHECK_SCRIPT]
    )
    price_analysis = _crawler_task("price_analysis", ["python", "-m", "jobs", "run", "analysis"])

    full_crawl >> observation_check >> price_analysis
