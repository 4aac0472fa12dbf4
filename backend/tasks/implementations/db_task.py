"""Database step, delegating to an injected DatabaseProvider."""

from typing import Any, Dict

from app.config import get_settings
from tasks.base_task import BaseTask, StepContext
from workflow.models import DbConfig


class DatabaseTask(BaseTask):
    """Query a database connection known to the provider.

    Config:
        connection: Connection id (connected on demand)
        action: query | schema | tables
        query: SQL text (query only; variables resolved)
        limit: Max rows (default: DB_DEFAULT_LIMIT)
    """

    step_type = "db"
    display_name = "Database"
    description = "Run queries or inspect schema on a configured connection"
    config_model = DbConfig

    async def execute(self, config: DbConfig, ctx: StepContext) -> Dict[str, Any]:
        provider = ctx.services.db_provider
        if provider is None:
            raise RuntimeError("Database provider not available")

        connection_id = ctx.resolve(config.connection or "")
        if not connection_id:
            raise ValueError("No database connection specified")

        await ctx.cancel.guard(self._ensure_connected(provider, connection_id))

        action = (config.action or "query").lower()
        if action in ("schema", "tables"):
            tables = await ctx.cancel.guard(provider.get_schema(connection_id))
            if action == "tables":
                tables = [self._table_name(t) for t in tables]
            return {"tables": tables, "tableCount": len(tables)}

        if action != "query":
            raise ValueError(f"Unknown database action: {action}")

        sql = ctx.resolve(config.query or "")
        if not sql.strip():
            raise ValueError("No query specified")
        limit = config.limit or get_settings().DB_DEFAULT_LIMIT

        result = await ctx.cancel.guard(provider.query(connection_id, sql, limit))
        rows = list(result.get("rows") or [])
        output = {"rows": rows, "rowCount": result.get("rowCount", len(rows))}
        if "columns" in result:
            output["columns"] = result["columns"]
        return output

    @staticmethod
    async def _ensure_connected(provider: Any, connection_id: str) -> None:
        if await provider.is_connected(connection_id):
            return
        connection_config = await provider.get_connection_config(connection_id)
        if connection_config is None:
            raise LookupError(f'Database connection "{connection_id}" not found')
        await provider.connect(connection_id, connection_config)

    @staticmethod
    def _table_name(table: Any) -> Any:
        if isinstance(table, dict):
            return table.get("name") or table.get("table_name") or table
        return table


DB_TASK_TYPES = {
    "db": DatabaseTask,
}
