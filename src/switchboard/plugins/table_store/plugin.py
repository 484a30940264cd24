"""Table store plugin: record CRUD tools plus an LLM-driven ``organize`` tool."""

from collections.abc import Sequence
import json
from typing import Any

import httpx
import structlog

from switchboard.core.errors import ExternalServiceError, ToolExecutionError
from switchboard.core.text import parse_json_payload
from switchboard.core.types import JSONObject
from switchboard.plugin.base import (
    PluginContext,
    PromptSubmitter,
    Tool,
    ToolDefinition,
    ToolInputType,
    ToolParameter,
)
from switchboard.plugins.table_store.client import (
    DEFAULT_BASE_URL,
    DEFAULT_REQUESTS_PER_SECOND,
    SERVICE_NAME,
    TableStoreClient,
)

log = structlog.get_logger(__name__)

PLUGIN_NAME = "table_store"

ORGANIZE_SYSTEM_PROMPT = """You organise table records into groups.
Reply with a single JSON object and nothing else:
{"groups": [{"name": "<group name>", "record_ids": ["<id>", ...], "summary": "<one sentence>"}]}
Every record id must come from the input. A record belongs to at most one group."""

_FIELDS_SCHEMA: JSONObject = {"type": "object"}


class TableStorePlugin:
    """Plugin exposing a table-store base as tools.

    Tools:
        list_records: List records of a table, optionally filtered.
        create_record: Create one record.
        update_record: Patch one record's fields.
        delete_record: Delete one record.
        organize: Group the records of a source table with the help of a
            model and write one summary record per group to a target table.
    """

    def __init__(self, *, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._transport = transport
        self._client: TableStoreClient | None = None
        self._submitter: PromptSubmitter | None = None

    @property
    def name(self) -> str:
        return PLUGIN_NAME

    @property
    def client(self) -> TableStoreClient:
        if self._client is None:
            msg = "table_store plugin is not initialized"
            raise RuntimeError(msg)
        return self._client

    async def initialize(self, context: PluginContext) -> None:
        api_key = context.setting("api_key")
        base_id = context.setting("base_id")
        if not api_key or not base_id:
            msg = "api_key and base_id are required"
            raise ValueError(msg)

        raw_rate = context.setting("requests_per_second") or str(DEFAULT_REQUESTS_PER_SECOND)
        rate = float(raw_rate)
        if rate <= 0:
            msg = f"requests_per_second must be positive, got {raw_rate}"
            raise ValueError(msg)

        limiter = context.rate_limiters.get(f"{SERVICE_NAME}:{base_id}", rate)
        self._client = TableStoreClient(
            api_key=api_key,
            base_id=base_id,
            base_url=context.setting("base_url") or DEFAULT_BASE_URL,
            limiter=limiter,
            transport=self._transport,
        )
        self._submitter = context.submitter
        log.info("table_store.initialized", base_id=base_id, requests_per_second=rate)

    def tools(self) -> Sequence[Tool]:
        table = ToolParameter(
            name="table",
            type=ToolInputType.STRING,
            description="Table name or id",
        )
        record_id = ToolParameter(
            name="record_id",
            type=ToolInputType.STRING,
            description="Record id",
        )
        fields = ToolParameter(
            name="fields",
            type=ToolInputType.OBJECT,
            description="Field values keyed by field name",
        )
        definitions = [
            (
                ToolDefinition(
                    name="list_records",
                    description="List records of a table, optionally filtered by a formula.",
                    parameters=(
                        table,
                        ToolParameter(
                            name="filter_formula",
                            type=ToolInputType.STRING,
                            description="Formula records must satisfy",
                            required=False,
                        ),
                        ToolParameter(
                            name="max_records",
                            type=ToolInputType.INTEGER,
                            description="Maximum number of records to return",
                            required=False,
                        ),
                        ToolParameter(
                            name="view",
                            type=ToolInputType.STRING,
                            description="View whose filter and order to apply",
                            required=False,
                        ),
                    ),
                ),
                self._list_records,
            ),
            (
                ToolDefinition(
                    name="create_record",
                    description="Create a record in a table.",
                    parameters=(table, fields),
                ),
                self._create_record,
            ),
            (
                ToolDefinition(
                    name="update_record",
                    description="Update fields of an existing record.",
                    parameters=(table, record_id, fields),
                ),
                self._update_record,
            ),
            (
                ToolDefinition(
                    name="delete_record",
                    description="Delete a record from a table.",
                    parameters=(table, record_id),
                ),
                self._delete_record,
            ),
            (
                ToolDefinition(
                    name="organize",
                    description=(
                        "Group the records of a source table by topic and write one "
                        "summary record per group into a target table."
                    ),
                    parameters=(
                        ToolParameter(
                            name="source_table",
                            type=ToolInputType.STRING,
                            description="Table to read records from",
                        ),
                        ToolParameter(
                            name="target_table",
                            type=ToolInputType.STRING,
                            description="Table receiving one record per group",
                        ),
                        ToolParameter(
                            name="instructions",
                            type=ToolInputType.STRING,
                            description="How to group the records",
                            required=False,
                        ),
                        ToolParameter(
                            name="max_records",
                            type=ToolInputType.INTEGER,
                            description="Maximum source records to read",
                            required=False,
                            default=100,
                        ),
                    ),
                ),
                self._organize,
            ),
        ]
        return [Tool(definition=d, handler=h, plugin=PLUGIN_NAME) for d, h in definitions]

    async def shutdown(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
        log.info("table_store.shutdown")

    # -- handlers ----------------------------------------------------------

    async def _list_records(self, args: JSONObject) -> JSONObject:
        records = await self.client.list_records(
            args["table"],
            filter_formula=args.get("filter_formula"),
            max_records=args.get("max_records"),
            view=args.get("view"),
        )
        return {"records": records, "count": len(records)}

    async def _create_record(self, args: JSONObject) -> JSONObject:
        created = await self.client.create_records(args["table"], [args["fields"]])
        return created[0] if created else {}

    async def _update_record(self, args: JSONObject) -> JSONObject:
        updated = await self.client.update_records(
            args["table"],
            [{"id": args["record_id"], "fields": args["fields"]}],
        )
        return updated[0] if updated else {}

    async def _delete_record(self, args: JSONObject) -> JSONObject:
        deleted = await self.client.delete_records(args["table"], [args["record_id"]])
        return deleted[0] if deleted else {"id": args["record_id"], "deleted": False}

    async def _organize(self, args: JSONObject) -> JSONObject:
        if self._submitter is None:
            raise ToolExecutionError("organize needs a prompt submitter, none was provided")

        source = args["source_table"]
        target = args["target_table"]
        records = await self.client.list_records(source, max_records=args.get("max_records", 100))
        if not records:
            return {"source_records": 0, "groups": 0, "created": []}

        listing = [{"id": r.get("id"), "fields": r.get("fields", {})} for r in records]
        prompt = (
            f"{args.get('instructions') or 'Group these records by topic.'}\n\n"
            f"Records:\n{json.dumps(listing, ensure_ascii=False, default=str)}"
        )
        reply = await self._submitter.submit(prompt, system=ORGANIZE_SYSTEM_PROMPT)

        groups = _parse_groups(reply, {str(r["id"]) for r in listing if r["id"]})
        created = await self.client.create_records(
            target,
            [
                {
                    "Name": group["name"],
                    "Summary": group["summary"],
                    "Records": ", ".join(group["record_ids"]),
                    "Count": len(group["record_ids"]),
                }
                for group in groups
            ],
        )
        log.info(
            "table_store.organize.completed",
            source=source,
            target=target,
            records=len(records),
            groups=len(groups),
        )
        return {
            "source_records": len(records),
            "groups": len(groups),
            "created": [r.get("id") for r in created],
        }


def _parse_groups(reply: str, known_ids: set[str]) -> list[dict[str, Any]]:
    """Validate the model's grouping reply.

    Unknown record ids are dropped; a record claimed by several groups stays
    in the first.

    Raises:
        ExternalServiceError: If the reply is not the expected JSON shape.
    """
    data = parse_json_payload(reply, expect=dict)
    raw_groups = data.get("groups") if isinstance(data, dict) else None
    if not isinstance(raw_groups, list):
        raise ExternalServiceError(
            "Model reply did not contain a JSON object with a 'groups' list",
            service="orchestrator",
            details={"reply": reply[:500]},
        )

    groups: list[dict[str, Any]] = []
    claimed: set[str] = set()
    for raw in raw_groups:
        if not isinstance(raw, dict) or not isinstance(raw.get("name"), str):
            raise ExternalServiceError(
                "Model reply contained a group without a name",
                service="orchestrator",
                details={"group": raw},
            )
        ids = [
            str(i)
            for i in raw.get("record_ids", [])
            if str(i) in known_ids and str(i) not in claimed
        ]
        claimed.update(ids)
        groups.append(
            {"name": raw["name"], "record_ids": ids, "summary": str(raw.get("summary", ""))}
        )
    return groups
