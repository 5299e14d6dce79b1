"""Opening and validating the BigQuery connection for one project."""
import logging
from dataclasses import dataclass

from google.cloud import bigquery

from . import config as config_module
from .config import WarehouseConfig
from .events import EventEmitter

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Connection:
    """A validated client handle bound to one project."""
    project_id: str
    auth_method: str
    client: bigquery.Client


def open_connection(config: WarehouseConfig, events: EventEmitter) -> Connection:
    """
    Build a client and probe it with one ``list_datasets`` call.

    Remote errors from the probe propagate unchanged; nothing is retried.
    """
    events.log("Using config", config.describe())
    client = config_module.build_client(config)

    # The iterator is lazy; consume it so the request is actually sent.
    list(client.list_datasets(max_results=1))

    events.success(f"Successfully connected on project {config.project_id}")
    return Connection(
        project_id=config.project_id,
        auth_method=config.auth_method,
        client=client,
    )
